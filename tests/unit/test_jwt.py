"""Unit tests for session token issuance and verification."""

import uuid
from datetime import timedelta

import pytest
from jose import jwt

from edupulse.kernel.errors import (
    InvalidSessionTokenError,
    TokenExpiredError,
    TokenKindError,
    TokenSignatureError,
)
from edupulse.kernel.identity.jwt import IdentityClaims, JWTManager, TokenKind


@pytest.fixture
def claims() -> IdentityClaims:
    return IdentityClaims(sub=str(uuid.uuid4()), email="a@x.com", role="STUDENT")


class TestJWTManager:
    """Tests for JWTManager."""

    def test_rejects_shared_secret(self):
        """Access and refresh tokens must not share a key."""
        with pytest.raises(ValueError):
            JWTManager(access_secret="same-secret", refresh_secret="same-secret")

    def test_access_token_roundtrip(self, jwt_manager: JWTManager, claims: IdentityClaims):
        token, _ = jwt_manager.issue_access_token(claims)
        payload = jwt_manager.verify_access_token(token)

        assert payload.sub == claims.sub
        assert payload.email == claims.email
        assert payload.role == claims.role
        assert payload.type == TokenKind.ACCESS
        assert payload.user_id == uuid.UUID(claims.sub)

    def test_token_pair(self, jwt_manager: JWTManager, claims: IdentityClaims):
        pair = jwt_manager.issue_token_pair(claims)

        assert pair.token_type == "bearer"
        assert 0 < pair.expires_in <= 15 * 60
        assert jwt_manager.verify_refresh_token(pair.refresh_token).sub == claims.sub
        assert jwt_manager.verify_access_token(pair.access_token).sub == claims.sub

    def test_tokens_are_unique(self, jwt_manager: JWTManager, claims: IdentityClaims):
        first = jwt_manager.issue_token_pair(claims)
        second = jwt_manager.issue_token_pair(claims)

        assert first.refresh_token != second.refresh_token

    def test_tampered_signature(self, jwt_manager: JWTManager, claims: IdentityClaims):
        token, _ = jwt_manager.issue_access_token(claims)
        header, body, signature = token.split(".")
        forged = f"{header}.{body}.{signature[:-4]}AAAA"

        with pytest.raises(TokenSignatureError):
            jwt_manager.verify_access_token(forged)

    def test_expired_token(self, jwt_manager: JWTManager, claims: IdentityClaims):
        token, _ = jwt_manager.issue_access_token(claims, expires_delta=timedelta(seconds=-5))

        with pytest.raises(TokenExpiredError):
            jwt_manager.verify_access_token(token)

    def test_wrong_kind(self, jwt_manager: JWTManager, claims: IdentityClaims):
        pair = jwt_manager.issue_token_pair(claims)

        with pytest.raises(TokenKindError):
            jwt_manager.verify_access_token(pair.refresh_token)
        with pytest.raises(TokenKindError):
            jwt_manager.verify_refresh_token(pair.access_token)

    def test_forged_kind_claim_fails_signature(self, jwt_manager: JWTManager, claims: IdentityClaims):
        """An access-signed token claiming to be a refresh token is rejected."""
        access, _ = jwt_manager.issue_access_token(claims)
        payload = jwt.get_unverified_claims(access)
        payload["type"] = "refresh"
        forged = jwt.encode(payload, "test-access-secret-for-testing-only-0123456789", algorithm="HS256")

        with pytest.raises(TokenSignatureError):
            jwt_manager.verify_refresh_token(forged)

    def test_garbage_token(self, jwt_manager: JWTManager):
        with pytest.raises(TokenSignatureError):
            jwt_manager.verify_access_token("not.a.jwt")

    def test_errors_are_authentication_errors(self):
        for error in (TokenSignatureError, TokenExpiredError, TokenKindError):
            exc = error()
            assert isinstance(exc, InvalidSessionTokenError)
            assert exc.status_code == 401

    def test_hash_token(self):
        assert JWTManager.hash_token("abc") == JWTManager.hash_token("abc")
        assert JWTManager.hash_token("abc") != JWTManager.hash_token("abd")
