"""
Local-disk file storage for the document vault.

Paths handed back to callers are opaque tokens of the form
``<scope>/<file name>``, relative to the storage root.  Signed URLs carry an
expiry timestamp and an HMAC-SHA256 signature over ``path:expires``.
"""
import hashlib
import hmac
import logging
import re
import time
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from models.vault import StoredFile

from .errors import InternalError, ValidationError

logger = logging.getLogger(__name__)


def safe_file_name(name: str, default: str = "document") -> str:
    """Keep word chars, hyphens and dots of the stem and suffix; replace everything else."""
    raw = Path(name or "").name
    stem = re.sub(r"[^\w\-.]", "_", Path(raw).stem).strip("_.") or default
    suffix = re.sub(r"[^\w.]", "", Path(raw).suffix.lower())
    return f"{stem}{suffix}"


class LocalFileStorage:

    def __init__(self, root: Path, secret: str, url_prefix: str = "/files") -> None:
        self.root = Path(root)
        self.secret = secret.encode("utf-8")
        self.url_prefix = url_prefix.rstrip("/")

    def _resolve(self, path: str) -> Path:
        """Map an opaque path to a file under root; reject anything escaping it."""
        root = self.root.resolve()
        target = (root / path).resolve()
        if root != target and root not in target.parents:
            raise ValidationError("Invalid storage path", {"path": path})
        return target

    def upload(self, scope: str, data: bytes, name: str, mimetype: str) -> StoredFile:
        """
        Write data under ``<root>/<scope>/``.  An existing file with the same
        name gets a numeric suffix instead of being overwritten.
        """
        scope_dir = self._resolve(safe_file_name(scope, "scope"))
        file_name = safe_file_name(name)
        stem, suffix = Path(file_name).stem, Path(file_name).suffix

        dest = scope_dir / file_name
        counter = 1
        while dest.exists():
            dest = scope_dir / f"{stem}_{counter}{suffix}"
            counter += 1

        try:
            scope_dir.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as exc:
            raise InternalError(f"Could not store {file_name}: {exc}") from exc

        path = f"{scope_dir.name}/{dest.name}"
        logger.info("Stored %s (%d bytes)", path, len(data))
        return StoredFile(path=path, size=len(data), mimetype=mimetype or "application/octet-stream")

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise InternalError(f"Could not read {path}: {exc}") from exc

    def delete(self, path: str) -> bool:
        """Remove a stored file.  Returns False when it was already gone."""
        target = self._resolve(path)
        if not target.exists():
            logger.debug("Delete skipped, %s does not exist", path)
            return False
        try:
            target.unlink()
        except OSError as exc:
            raise InternalError(f"Could not delete {path}: {exc}") from exc
        logger.info("Deleted stored file %s", path)
        return True

    # ------------------------------------------------------------------
    # Signed URLs
    # ------------------------------------------------------------------

    def _signature(self, path: str, expires: int) -> str:
        msg = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self.secret, msg, hashlib.sha256).hexdigest()

    def get_signed_url(self, path: str, ttl: int, now: Optional[float] = None) -> str:
        self._resolve(path)
        expires = int((now if now is not None else time.time()) + ttl)
        return (
            f"{self.url_prefix}/{quote(path)}"
            f"?expires={expires}&signature={self._signature(path, expires)}"
        )

    def verify_signature(self, path: str, expires: int, signature: str,
                         now: Optional[float] = None) -> bool:
        current = now if now is not None else time.time()
        if int(expires) < current:
            return False
        return hmac.compare_digest(self._signature(path, int(expires)), signature or "")
