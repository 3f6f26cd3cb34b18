from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from relay_registry.clock import utcnow
from relay_registry.config import SecurityConfig
from relay_registry.errors import Unauthorized
from relay_registry.security.tokens import ALGORITHM, AdminIdentity, TokenService


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(SecurityConfig(jwt_secret="unit-secret", jwt_expires_seconds=600))


def test_issue_and_verify_roundtrip(tokens):
    token = tokens.issue(7, "alice")
    assert tokens.verify(token) == AdminIdentity(admin_id=7, username="alice")
    assert tokens.expires_in == 600


def test_claims_carry_subject_issuer_and_expiry(tokens):
    claims = jwt.decode(tokens.issue(7, "alice"), "unit-secret", algorithms=[ALGORITHM], issuer="relay-registry")
    assert claims["sub"] == "7"
    assert claims["exp"] - claims["iat"] == 600


def test_expired_token_is_rejected():
    past = TokenService(
        SecurityConfig(jwt_secret="unit-secret", jwt_expires_seconds=60),
        clock=lambda: utcnow() - timedelta(hours=1),
    )
    token = past.issue(1, "old")
    with pytest.raises(Unauthorized) as ei:
        past.verify(token)
    assert ei.value.message == "Token expired"
    assert ei.value.headers["WWW-Authenticate"] == 'Bearer realm="admin"'


def test_foreign_secret_or_issuer_is_rejected(tokens):
    other = TokenService(SecurityConfig(jwt_secret="someone-else"))
    with pytest.raises(Unauthorized):
        tokens.verify(other.issue(1, "mallory"))

    other_issuer = TokenService(SecurityConfig(jwt_secret="unit-secret", jwt_issuer="elsewhere"))
    with pytest.raises(Unauthorized):
        tokens.verify(other_issuer.issue(1, "mallory"))


def test_garbage_and_bad_subject_are_rejected(tokens):
    with pytest.raises(Unauthorized):
        tokens.verify("not.a.jwt")
    forged = jwt.encode(
        {"sub": "root", "exp": utcnow() + timedelta(minutes=5), "iss": "relay-registry"},
        "unit-secret",
        algorithm=ALGORITHM,
    )
    with pytest.raises(Unauthorized):
        tokens.verify(forged)
