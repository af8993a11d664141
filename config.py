"""
Central configuration for the sales back-office.

All paths, per-document-type defaults, and collaborator settings are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. config/settings.json  (admin-editable, persisted)
  2. Environment variables
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_OUTPUT_DIR     = PROJECT_ROOT / "output"
DEFAULT_DB_PATH        = DEFAULT_OUTPUT_DIR / "backoffice.db"
DEFAULT_STORAGE_DIR    = DEFAULT_OUTPUT_DIR / "vault"


@dataclass
class Config:
    # --- Persistence ---
    db_path:      Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )

    # --- File storage (document vault) ---
    storage_dir:  Path = field(
        default_factory=lambda: Path(os.getenv("STORAGE_DIR", str(DEFAULT_STORAGE_DIR)))
    )
    storage_signing_secret: str = field(
        default_factory=lambda: os.getenv("STORAGE_SIGNING_SECRET", "change-me")
    )
    signed_url_ttl_seconds: int = field(
        default_factory=lambda: int(os.getenv("SIGNED_URL_TTL", "3600"))
    )

    # --- Money ---
    default_currency: str = field(
        default_factory=lambda: os.getenv("DEFAULT_CURRENCY", "EUR")
    )
    invoice_vat_rate:        float = 20.0   # percent, applied when a line item omits its own
    quote_vat_rate:          float = 20.0
    delivery_note_vat_rate:  float = 0.0    # delivery notes are not taxable documents

    # --- Listing / numbering ---
    default_page_size:        int = 20
    number_fetch_limit:       int = 100   # recent numbers scanned when minting the next one
    number_conflict_retries:  int = 1     # whole-operation retries after a duplicate number

    # --- Document classifier (OpenAI-compatible API) ---
    # Works with Ollama, OpenAI, Groq, Azure OpenAI, or any OpenAI-compatible backend.
    #
    # Ollama (default):   LLM_BASE_URL=http://host.docker.internal:11434/v1  LLM_API_KEY=ollama
    # OpenAI:             LLM_BASE_URL=https://api.openai.com/v1              LLM_API_KEY=sk-...
    classifier_enabled: bool = field(
        default_factory=lambda: os.getenv("CLASSIFIER_ENABLED", "false").lower() == "true"
    )
    llm_model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "llama3.2")
    )
    llm_base_url: str = field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "http://localhost:11434/v1")
    )
    llm_api_key: str = field(
        default_factory=lambda: os.getenv("LLM_API_KEY", "ollama")
    )
    llm_timeout_seconds: Optional[float] = 60.0

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from settings.json if present."""
        config_dir = Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))
        settings_file = config_dir / "settings.json"
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "default_currency":         str,
            "invoice_vat_rate":         float,
            "quote_vat_rate":           float,
            "delivery_note_vat_rate":   float,
            "default_page_size":        int,
            "number_fetch_limit":       int,
            "number_conflict_retries":  int,
            "signed_url_ttl_seconds":   int,
            "classifier_enabled":       bool,
            "llm_model":                str,
            "llm_base_url":             str,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except Exception as exc:
            logger.warning("Failed to load settings.json: %s", exc)

    def vat_rate_for(self, doc_type: str) -> float:
        """Default VAT percent for a document type (invoice | quote | delivery_note)."""
        return {
            "invoice":        self.invoice_vat_rate,
            "quote":          self.quote_vat_rate,
            "delivery_note":  self.delivery_note_vat_rate,
        }.get(doc_type, 0.0)

    def ensure_dirs(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
