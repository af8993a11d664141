"""
Document vault service: upload, classify, list, sign, delete.

Upload flow:
  1. Store the bytes (LocalFileStorage)
  2. Classify when a classifier is configured; otherwise, or on any
     classifier failure, derive the title from the file name
  3. Create the documents row (processing_status = pending) and its tags
  4. Enqueue a process_document job and audit the upload

If the row cannot be created, the stored file is removed again.
"""
import logging
import re
from pathlib import Path
from typing import Any, Optional

from config import Config
from models.pagination import CursorPage, CursorRequest
from models.vault import Classification, VaultDocument, VaultDocumentUpdate, VaultFilters

from .audit import AuditLog
from .classifier import LLMClassifier
from .database import Database
from .errors import BackofficeError, ValidationError, validate_payload
from .jobs import JOB_PROCESS_DOCUMENT, JobQueue
from .mapper import normalize_date
from .query_builder import clamp_page_size
from .storage import LocalFileStorage
from .tenant import TenantResolver
from .vault import TagRepository, VaultRepository

logger = logging.getLogger(__name__)

# Text kept in documents.content for text/* uploads
MAX_STORED_CONTENT = 100_000

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def title_from_name(name: str) -> str:
    """``q3_sales-report.final.pdf`` -> ``q3 sales report.final``"""
    stem = Path(name or "").stem
    title = re.sub(r"[_\-]+", " ", stem).strip()
    return title or (name or "Untitled")


class VaultService:

    def __init__(
        self,
        db: Database,
        storage: LocalFileStorage,
        config: Optional[Config] = None,
        classifier: Optional[LLMClassifier] = None,
        audit: Optional[AuditLog] = None,
        jobs: Optional[JobQueue] = None,
    ) -> None:
        self.db = db
        self.storage = storage
        self.config = config or Config()
        self.classifier = classifier
        self.resolver = TenantResolver(db)
        self.documents = VaultRepository(db, self.resolver)
        self.tags = TagRepository(db, self.resolver)
        self.audit = audit or AuditLog(db)
        self.jobs = jobs or JobQueue(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_documents(self, company_id: str, request: Optional[CursorRequest] = None,
                       filters: Optional[VaultFilters] = None) -> CursorPage:
        try:
            return self.documents.find_all(company_id, request, filters)
        except BackofficeError as exc:
            logger.error("Listing vault documents for company %s failed: %s", company_id, exc)
            size = clamp_page_size(request.page_size if request else self.config.default_page_size)
            return CursorPage(data=[], next_cursor=None, page_size=size, error=str(exc))

    def get_document(self, company_id: str, document_id: str) -> VaultDocument:
        return self.documents.find_by_id(company_id, document_id)

    def recent(self, company_id: str, limit: int = 10) -> list[VaultDocument]:
        return self.documents.find_recent(company_id, limit)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _classify(self, name: str, mimetype: str, text: Optional[str]) -> Optional[Classification]:
        if self.classifier is None:
            return None
        try:
            return self.classifier.classify(name, mimetype, text)
        except Exception as exc:
            logger.warning("Classification of %s failed, using file name: %s", name, exc)
            return None

    def upload(self, company_id: str, data: bytes, name: str, mimetype: str,
               owner_id: Optional[str] = None) -> VaultDocument:
        if not data:
            raise ValidationError("Uploaded file is empty", {"name": name})
        scope = self.resolver.resolve(company_id)
        stored = self.storage.upload(scope, data, name, mimetype)

        text = None
        if stored.mimetype.startswith("text/"):
            text = data.decode("utf-8", errors="replace")[:MAX_STORED_CONTENT]

        row: dict[str, Any] = {
            "name": stored.path.rsplit("/", 1)[-1],
            "title": title_from_name(name),
            "content": text,
            "path_tokens": stored.path.split("/"),
            "metadata": {"size": stored.size, "mimetype": stored.mimetype, "original_name": name},
            "processing_status": "pending",
            "tenant_scope_id": scope,
            "owner_id": owner_id,
        }

        classification = self._classify(name, stored.mimetype, text)
        if classification is not None:
            date = normalize_date(classification.date)
            row.update(
                title=classification.title or row["title"],
                summary=classification.summary,
                language=classification.language,
                date=date if date and _DATE_RE.match(date) else None,
                tag=classification.tags[0] if classification.tags else None,
            )

        try:
            document_id = self.documents.create(row)
        except BackofficeError:
            self.storage.delete(stored.path)
            raise

        for tag_name in (classification.tags if classification else []):
            try:
                tag = self.tags.upsert(company_id, tag_name)
                self.tags.assign(company_id, document_id, tag.id)
            except BackofficeError as exc:
                logger.warning("Tag %r not applied to %s: %s", tag_name, document_id, exc)

        self.jobs.enqueue(JOB_PROCESS_DOCUMENT, {"document_id": document_id, "path": stored.path})
        self.audit.log_action(owner_id, "uploaded", "document", document_id,
                              {"name": name, "size": stored.size})
        logger.info("Vault upload %s → %s", name, document_id)
        return self.documents.find_by_id(company_id, document_id)

    def update_document(self, company_id: str, document_id: str, payload: Any,
                        actor: Optional[str] = None) -> VaultDocument:
        req = validate_payload(VaultDocumentUpdate, payload)
        doc = self.documents.update(company_id, document_id, req.model_dump(exclude_unset=True))
        self.audit.log_action(actor, "updated", "document", document_id,
                              {"fields": sorted(req.model_fields_set)})
        return doc

    def add_tag(self, company_id: str, document_id: str, tag_name: str) -> VaultDocument:
        tag = self.tags.upsert(company_id, tag_name)
        self.tags.assign(company_id, document_id, tag.id)
        return self.documents.find_by_id(company_id, document_id)

    def remove_tag(self, company_id: str, document_id: str, tag_id: str) -> VaultDocument:
        self.tags.unassign(company_id, document_id, tag_id)
        return self.documents.find_by_id(company_id, document_id)

    def signed_url(self, company_id: str, document_id: str, ttl: Optional[int] = None) -> str:
        doc = self.documents.find_by_id(company_id, document_id)
        path = "/".join(doc.path_tokens or [])
        if not path:
            raise ValidationError("Document has no stored file", {"id": document_id})
        return self.storage.get_signed_url(path, ttl or self.config.signed_url_ttl_seconds)

    def delete(self, company_id: str, document_id: str, actor: Optional[str] = None) -> None:
        """Delete the row first, then the file.  A file left behind is only logged."""
        doc = self.documents.delete(company_id, document_id)
        path = "/".join(doc.path_tokens or [])
        if path:
            try:
                self.storage.delete(path)
            except BackofficeError as exc:
                logger.warning("Stored file %s for %s not removed: %s", path, document_id, exc)
        self.audit.log_action(actor, "deleted", "document", document_id, {"name": doc.name})
