"""
Vault document classification over an OpenAI-compatible chat API.

Works with any OpenAI-compatible backend:
  - Ollama (local):  LLM_BASE_URL=http://host.docker.internal:11434/v1  LLM_API_KEY=ollama
  - OpenAI:          LLM_BASE_URL=https://api.openai.com/v1              LLM_API_KEY=sk-...

Classification is optional.  Every failure (unreachable endpoint, bad JSON,
validation error) returns None and the vault falls back to a title derived
from the file name.
"""
import json
import logging
import re
from typing import Optional

from openai import OpenAI

from models.vault import Classification

logger = logging.getLogger(__name__)

# Characters of document text sent to the model
MAX_CONTENT_CHARS = 4000

_PROMPT = """You are a document classification system for a small business back-office.
Given a document's file name and (when available) its text, describe it.

IMPORTANT RULES:
- Return ONLY the JSON object -- no markdown, no explanation, no code fences
- Dates must be in YYYY-MM-DD format
- language is an ISO 639-1 code, e.g. "en", "sr", "de"
- tags are short lowercase category words, at most 5
- Use null for anything you cannot determine

Return a JSON object with exactly this structure:
{{
  "title": "string or null",
  "summary": "one or two sentences, or null",
  "tags": ["string"],
  "language": "string or null",
  "date": "YYYY-MM-DD or null"
}}

File name: {name}
MIME type: {mimetype}

Document text:
---
{content}
---"""


class LLMClassifier:
    """Asks an LLM for title / summary / tags / language / date of a vault document."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = "http://localhost:11434/v1",
        api_key: str = "ollama",
        timeout: Optional[float] = 60.0,
        attempts: int = 2,
    ):
        self.model    = model
        self.base_url = base_url
        self.api_key  = api_key
        self.timeout  = timeout
        self.attempts = attempts
        self._client  = None

    @classmethod
    def from_config(cls, config) -> "LLMClassifier":
        return cls(
            model=config.llm_model,
            base_url=config.llm_base_url,
            api_key=config.llm_api_key,
            timeout=config.llm_timeout_seconds,
        )

    def _get_client(self) -> OpenAI:
        """Lazily initialise the OpenAI client."""
        if self._client is None:
            self._client = OpenAI(base_url=self.base_url, api_key=self.api_key, timeout=self.timeout)
        return self._client

    def classify(self, name: str, mimetype: str, content: Optional[str] = None) -> Optional[Classification]:
        prompt = _PROMPT.format(
            name=name,
            mimetype=mimetype,
            content=(content or "(binary file, no text available)")[:MAX_CONTENT_CHARS],
        )
        for attempt in range(1, self.attempts + 1):
            logger.debug("Classification attempt %d for %s (model=%s)", attempt, name, self.model)
            try:
                response = self._get_client().chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=0.0,
                )
                raw = (response.choices[0].message.content or "").strip()
            except Exception as e:
                logger.warning("Classifier attempt %d failed: %s", attempt, e)
                continue
            result = parse_classification(raw)
            if result is not None:
                return result
        logger.warning("Classifier gave up on %s", name)
        return None

    def check_connection(self) -> dict:
        """Verify the LLM endpoint is reachable and the configured model is available."""
        try:
            models_response = self._get_client().models.list()
            available = [m.id for m in models_response.data]
            return {
                "ok": True,
                "base_url": self.base_url,
                "model_available": any(self.model in m for m in available),
            }
        except Exception as e:
            return {"ok": False, "base_url": self.base_url, "error": str(e), "model_available": False}


def parse_classification(raw: str) -> Optional[Classification]:
    """
    Extract and validate the JSON object from a model response.
    Handles markdown code fences and trailing commas.
    """
    raw = re.sub(r"^```(?:json)?\s*", "", raw or "", flags=re.IGNORECASE)
    raw = re.sub(r"\s*```$", "", raw).strip()

    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start == -1 or end == 0:
        logger.warning("No JSON object found in classifier response")
        return None

    json_str = raw[start:end]
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        json_str = re.sub(r",\s*([}\]])", r"\1", json_str)
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError:
            logger.warning("Could not repair JSON from classifier response")
            return None

    if not isinstance(data, dict):
        return None
    if not isinstance(data.get("tags"), list):
        data["tags"] = []
    data["tags"] = [str(t).strip() for t in data["tags"] if t and str(t).strip()][:5]
    try:
        return Classification.model_validate(
            {k: v for k, v in data.items() if k in Classification.model_fields}
        )
    except Exception as e:
        logger.warning("Classification validation failed: %s", e)
        return None
