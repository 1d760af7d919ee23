"""Shared-secret checks for inbound webhooks."""

import hmac

_BEARER_PREFIX = "bearer "


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header, else None."""
    if not authorization:
        return None
    if authorization[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = authorization[len(_BEARER_PREFIX):].strip()
    return token or None


def verify_shared_secret(authorization: str | None, expected: str) -> bool:
    """Constant-time comparison of the bearer token against the configured secret.

    An unset secret rejects every caller.
    """
    if not expected:
        return False
    token = extract_bearer_token(authorization)
    if token is None:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
