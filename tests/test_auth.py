from datetime import datetime, timedelta, timezone

import pytest

from auth import decode_session, encode_session, is_expired, start_session


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def test_session_lasts_one_day():
    session = start_session("user-1", now=NOW)

    assert session.expires_at - session.issued_at == timedelta(hours=24)
    assert not is_expired(session, NOW + timedelta(hours=23))
    assert not is_expired(session, session.expires_at)
    assert is_expired(session, session.expires_at + timedelta(seconds=1))


def test_token_carries_owner_and_expiry():
    session = start_session("user-1", now=NOW)

    restored = decode_session(encode_session(session))

    assert restored == session


def test_tampered_token_is_rejected():
    token = encode_session(start_session("user-1", now=NOW))

    assert decode_session(token[:-2] + "xx") is None
    assert decode_session("not-a-token") is None


def test_start_session_requires_owner():
    with pytest.raises(ValueError):
        start_session("")
