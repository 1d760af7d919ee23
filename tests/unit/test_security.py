"""Unit tests for the webhook shared-secret check.

Tests:
  - bearer token extraction is case-insensitive on the scheme
  - matching token accepted, mismatched or missing rejected
  - an unset secret rejects everyone, even an empty bearer
"""

from __future__ import annotations

from app.core.security import extract_bearer_token, verify_shared_secret


class TestExtractBearerToken:
    def test_extracts_token(self) -> None:
        assert extract_bearer_token("Bearer abc123") == "abc123"
        assert extract_bearer_token("bearer abc123") == "abc123"

    def test_rejects_other_schemes(self) -> None:
        assert extract_bearer_token("Basic abc123") is None
        assert extract_bearer_token("abc123") is None
        assert extract_bearer_token("Bearer ") is None
        assert extract_bearer_token(None) is None


class TestVerifySharedSecret:
    def test_match(self) -> None:
        assert verify_shared_secret("Bearer s3cret", "s3cret") is True

    def test_mismatch(self) -> None:
        assert verify_shared_secret("Bearer wrong", "s3cret") is False
        assert verify_shared_secret(None, "s3cret") is False

    def test_unset_secret_rejects_all(self) -> None:
        assert verify_shared_secret("Bearer anything", "") is False
        assert verify_shared_secret("Bearer ", "") is False
