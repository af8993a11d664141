"""
Audit/event log.

log_action() is fire-and-forget: a failure to write the entry is logged and
swallowed so it can never fail the operation being audited.
"""
import json
import logging
from typing import Optional

from .database import Database, utcnow
from .errors import BackofficeError

logger = logging.getLogger(__name__)


class AuditLog:

    def __init__(self, db: Database) -> None:
        self.db = db

    def log_action(
        self,
        actor: Optional[str],
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Append one entry to the audit log."""
        try:
            self.db.execute(
                """INSERT INTO audit_log (timestamp, actor, action, entity_type, entity_id, metadata)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    utcnow(),
                    actor or "system",
                    action,
                    entity_type,
                    entity_id,
                    json.dumps(metadata, default=str) if metadata is not None else None,
                ),
            )
        except (BackofficeError, TypeError, ValueError) as exc:
            logger.error("Audit entry %s %s/%s not written: %s", action, entity_type, entity_id, exc)

    def entries(self, entity_type: Optional[str] = None, entity_id: Optional[str] = None,
                limit: int = 100) -> list[dict]:
        """Most recent entries first, optionally for one entity."""
        clauses, params = [], []
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if entity_id:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
        rows = self.db.fetch_all(
            f"SELECT * FROM audit_log {where} ORDER BY id DESC LIMIT ?", params + [limit]
        )
        for r in rows:
            if r.get("metadata"):
                try:
                    r["metadata"] = json.loads(r["metadata"])
                except ValueError:
                    pass
        return rows
