"""Signed session tokens carrying the identity provider's user id."""

from __future__ import annotations

import os

from itsdangerous import BadSignature, URLSafeTimedSerializer

DEFAULT_MAX_AGE = int(os.environ.get("SESSION_MAX_AGE", 60 * 60 * 24))
SESSION_SALT = "session"


def _serializer() -> URLSafeTimedSerializer:
    secret = os.environ.get("SIGNING_SECRET", "change-me")
    return URLSafeTimedSerializer(secret_key=secret)


def issue_session_token(user_id: str) -> str:
    return _serializer().dumps({"user_id": user_id}, salt=SESSION_SALT)


def load_user_id(token: str, max_age: int = DEFAULT_MAX_AGE) -> str:
    """Return the user id inside ``token``; raises ``BadSignature`` otherwise."""
    data = _serializer().loads(token, max_age=max_age, salt=SESSION_SALT)
    if not isinstance(data, dict) or not data.get("user_id"):
        raise BadSignature("Token carries no user id")
    return str(data["user_id"])
