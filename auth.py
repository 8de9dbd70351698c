from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


SESSION_COOKIE = "spendify_session"


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    issued_at: datetime
    expires_at: datetime


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.session_secret, salt="spendify-session")


def start_session(user_id: str, now: Optional[datetime] = None) -> AuthSession:
    if not user_id:
        raise ValueError("User id is required")
    now = now or datetime.now(timezone.utc)
    ttl = timedelta(hours=get_settings().session_ttl_hours)
    return AuthSession(user_id=user_id, issued_at=now, expires_at=now + ttl)


def is_expired(session: AuthSession, now: datetime) -> bool:
    return now > session.expires_at


def encode_session(session: AuthSession) -> str:
    token_data = {
        "u": session.user_id,
        "ts": int(session.issued_at.timestamp()),
        "exp": int(session.expires_at.timestamp()),
    }
    return _serializer().dumps(token_data)


def decode_session(token: str) -> Optional[AuthSession]:
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return None

    user_id = data.get("u")
    issued = data.get("ts")
    expiry = data.get("exp")
    if not user_id or issued is None or expiry is None:
        return None

    return AuthSession(
        user_id=str(user_id),
        issued_at=datetime.fromtimestamp(issued, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(expiry, tz=timezone.utc),
    )
