"""
Tenant scope resolution.

Every company may belong to a tenant; rows are owned by that tenant so that
several companies of one tenant see the same documents.  A company without a
tenant mapping owns its rows directly.  Every list, detail, and write path
goes through TenantResolver.resolve() so the fallback is applied the same way
everywhere.
"""
import logging

from .database import Database
from .errors import BackofficeError

logger = logging.getLogger(__name__)


class TenantResolver:

    def __init__(self, db: Database) -> None:
        self.db = db

    def resolve(self, company_id: str) -> str:
        """
        Return the effective scope id for company_id.

        Falls back to company_id itself when the company has no row, has a
        NULL tenant, or the lookup fails.  Never raises.
        """
        try:
            row = self.db.fetch_one(
                "SELECT tenant_id FROM companies WHERE id = ?", [company_id]
            )
        except BackofficeError as exc:
            logger.warning(
                "Tenant lookup failed for company %s, using company scope: %s",
                company_id, exc,
            )
            return company_id
        if row and row.get("tenant_id"):
            return row["tenant_id"]
        return company_id
