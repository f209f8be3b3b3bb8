from __future__ import annotations

import logging
import os
import uuid

from werkzeug.utils import secure_filename

from mercado_obras.domain.contracts import Attachment
from mercado_obras.errors import IntegrationError


logger = logging.getLogger("mercado_obras")


class LocalFileStorage:
    """Stores uploads under ``UPLOAD_DIR``; returned urls are locators resolved back by ``path_for``."""

    def __init__(self, root_dir: str, base_url: str = "/uploads") -> None:
        self.root_dir = root_dir
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_config(cls, config) -> "LocalFileStorage":
        return cls(config["UPLOAD_DIR"], config.get("UPLOAD_BASE_URL", "/uploads"))

    def store(self, attachment: Attachment, *, prefix: str = "") -> str:
        safe_name = secure_filename(attachment.filename or "") or "arquivo"
        stored_name = f"{prefix}{uuid.uuid4().hex[:12]}_{safe_name}"
        try:
            os.makedirs(self.root_dir, exist_ok=True)
            with open(os.path.join(self.root_dir, stored_name), "wb") as handle:
                handle.write(attachment.data)
        except OSError as exc:
            logger.error("upload_store_failed", extra={"filename": safe_name, "error": str(exc)[:200]})
            raise IntegrationError("storage_unavailable", details=str(exc)[:200]) from exc
        return f"{self.base_url}/{stored_name}"

    def path_for(self, url: str) -> str | None:
        name = secure_filename(os.path.basename(url or ""))
        if not name:
            return None
        return os.path.join(self.root_dir, name)

    def delete(self, url: str) -> None:
        path = self.path_for(url)
        if not path:
            return
        try:
            os.remove(path)
        except OSError as exc:
            logger.warning("upload_delete_failed", extra={"url": url, "error": str(exc)})
