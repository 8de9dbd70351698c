import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from config import get_settings


logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "heic"}
_OWNER_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ReceiptRejected(ValueError):
    pass


class ReceiptStore:
    def __init__(
        self,
        root: Optional[Path] = None,
        base_url: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.root = root or settings.receipts_dir
        self.base_url = (
            base_url if base_url is not None else settings.receipts_base_url
        ).rstrip("/")
        self.max_bytes = max_bytes or settings.receipt_max_bytes

    def save(
        self,
        user_id: str,
        filename: str,
        content: bytes,
        now: Optional[datetime] = None,
    ) -> str:
        """Store a receipt image and return the URL it is served under."""
        if not _OWNER_PATTERN.match(user_id or ""):
            raise ReceiptRejected("Invalid owner id for receipt storage")
        ext = Path(filename or "").suffix.lower().lstrip(".")
        if ext not in ALLOWED_EXTENSIONS:
            raise ReceiptRejected(f"Unsupported receipt file type '{ext or filename}'")
        if not content:
            raise ReceiptRejected("Receipt file is empty")
        if len(content) > self.max_bytes:
            raise ReceiptRejected(
                f"Receipt exceeds the {self.max_bytes} byte upload limit"
            )

        now = now or datetime.now(timezone.utc)
        key = f"{user_id}/{int(now.timestamp() * 1000)}.{ext}"
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info(f"receipt_saved: owner={user_id} key={key} bytes={len(content)}")
        return f"{self.base_url}/{key}"
