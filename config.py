import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_ttl_hours: int,
        identity_header: str,
        receipts_dir: Path,
        receipts_base_url: str,
        receipt_max_bytes: int,
        ledger_cache_ttl_secs: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_ttl_hours = session_ttl_hours
        self.identity_header = identity_header
        self.receipts_dir = receipts_dir
        self.receipts_base_url = receipts_base_url
        self.receipt_max_bytes = receipt_max_bytes
        self.ledger_cache_ttl_secs = ledger_cache_ttl_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDIFY_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spendify.db"
    database_url = os.getenv("SPENDIFY_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPENDIFY_TIMEZONE", "Asia/Seoul")
    session_secret = os.getenv(
        "SPENDIFY_SESSION_SECRET",
        "5f0c1d9e7a3b42c8a61e2f7d94b03c58e1a7f6d20b9c4e83a5d71f60c2b8e947",
    )
    session_ttl_hours = int(os.getenv("SPENDIFY_SESSION_TTL_HOURS", "24"))
    identity_header = os.getenv("SPENDIFY_IDENTITY_HEADER", "X-Authenticated-User")
    receipts_dir = Path(
        os.getenv("SPENDIFY_RECEIPTS_DIR", str(data_dir / "receipts"))
    ).resolve()
    receipts_dir.mkdir(parents=True, exist_ok=True)
    receipts_base_url = os.getenv("SPENDIFY_RECEIPTS_BASE_URL", "/receipts").rstrip("/")
    receipt_max_bytes = int(
        os.getenv("SPENDIFY_RECEIPT_MAX_BYTES", str(10 * 1024 * 1024))
    )
    ledger_cache_ttl_secs = int(os.getenv("SPENDIFY_LEDGER_CACHE_TTL_SECS", "300"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_ttl_hours=session_ttl_hours,
        identity_header=identity_header,
        receipts_dir=receipts_dir,
        receipts_base_url=receipts_base_url,
        receipt_max_bytes=receipt_max_bytes,
        ledger_cache_ttl_secs=ledger_cache_ttl_secs,
    )
