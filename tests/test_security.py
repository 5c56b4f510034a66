# -*- coding: utf-8 -*-
"""
Clerk bearer-token checks on the /api/v1 routes.
"""

import json
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from app.core import security
from app.core.exceptions import UnauthorizedError

KID = "ins_test_key"


def _rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def signing_key():
    return _rsa_key()


@pytest.fixture
def jwks(signing_key, monkeypatch):
    """Primes the JWKS cache so no network call is made."""
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(signing_key.public_key()))
    jwk.update({"kid": KID, "use": "sig", "alg": "RS256"})
    monkeypatch.setattr(security.clerk_auth, "_jwks_cache", {"keys": [jwk]})
    monkeypatch.setattr(security.clerk_auth, "_jwks_cache_time", time.time())
    return jwk


def _token(key, kid=KID, **claims):
    now = int(time.time())
    payload = {"sub": "user_abc", "sid": "sess_1", "iat": now, "exp": now + 60}
    payload.update(claims)
    return jwt.encode(payload, key, algorithm="RS256", headers={"kid": kid})


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


class TestVerifyToken:
    def test_valid_token(self, jwks, signing_key):
        claims = security.clerk_auth.verify_token(_token(signing_key))
        assert claims["sub"] == "user_abc"

    def test_expired(self, jwks, signing_key):
        past = int(time.time()) - 3600
        with pytest.raises(UnauthorizedError, match="expired"):
            security.clerk_auth.verify_token(_token(signing_key, iat=past - 60, exp=past))

    def test_unknown_kid(self, jwks, signing_key):
        with pytest.raises(UnauthorizedError, match="unknown kid"):
            security.clerk_auth.verify_token(_token(signing_key, kid="ins_other"))

    def test_signed_by_another_key(self, jwks):
        with pytest.raises(UnauthorizedError):
            security.clerk_auth.verify_token(_token(_rsa_key()))

    def test_garbage(self, jwks):
        with pytest.raises(UnauthorizedError):
            security.clerk_auth.verify_token("not.a.jwt")

    def test_unauthorized_party(self, jwks, signing_key, monkeypatch):
        monkeypatch.setattr(security.clerk_auth, "authorized_parties", ["https://app.example.com"])
        with pytest.raises(UnauthorizedError, match="unauthorized party"):
            security.clerk_auth.verify_token(_token(signing_key, azp="https://evil.example.com"))

    def test_missing_jwks_url_is_unavailable(self):
        from app.core.exceptions import ServiceUnavailableError

        auth = security.ClerkAuth(jwks_url=None)
        with pytest.raises(ServiceUnavailableError):
            auth.get_jwks()


class TestRouteGuard:
    def test_missing_token(self, anon_client):
        response = anon_client.get("/api/v1/users")
        assert response.status_code == 401
        assert response.json()["status"] == "error"

    def test_invalid_token(self, anon_client, jwks):
        response = anon_client.get("/api/v1/users", headers=_auth("not.a.jwt"))
        assert response.status_code == 401

    def test_valid_token(self, anon_client, jwks, signing_key):
        response = anon_client.get("/api/v1/users", headers=_auth(_token(signing_key)))
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 0

    def test_me_uses_token_subject(self, anon_client, jwks, signing_key, make_user):
        make_user(oauth_id="user_abc", email="abc@example.com")
        response = anon_client.get("/api/v1/me", headers=_auth(_token(signing_key)))
        assert response.status_code == 200
        assert response.json()["data"]["email"] == "abc@example.com"

    def test_dev_switch_lets_anonymous_requests_through(self, anon_client, monkeypatch):
        monkeypatch.setattr(security.settings, "CLERK_AUTH_REQUIRED", False)
        assert anon_client.get("/api/v1/users").status_code == 200
        # /me still needs a subject
        assert anon_client.get("/api/v1/me").status_code == 401


class TestJwksFetch:
    def test_transient_failures_are_retried(self, monkeypatch):
        import requests

        calls = {"n": 0}

        class FakeResponse:
            def raise_for_status(self):
                pass

            def json(self):
                return {"keys": [{"kid": KID}]}

        def flaky_get(url, timeout):
            calls["n"] += 1
            if calls["n"] < 3:
                raise requests.exceptions.ConnectionError("reset by peer")
            return FakeResponse()

        monkeypatch.setattr(security.requests, "get", flaky_get)

        auth = security.ClerkAuth(jwks_url="https://clerk.example.com/.well-known/jwks.json")
        assert auth.get_jwks() == {"keys": [{"kid": KID}]}
        assert calls["n"] == 3

        # Served from cache afterwards
        auth.get_jwks()
        assert calls["n"] == 3

    def test_gives_up_with_503(self, monkeypatch):
        import requests

        from app.core.exceptions import ServiceUnavailableError

        def down(url, timeout):
            raise requests.exceptions.ConnectionError("down")

        monkeypatch.setattr(security.requests, "get", down)

        auth = security.ClerkAuth(jwks_url="https://clerk.example.com/.well-known/jwks.json")
        with pytest.raises(ServiceUnavailableError):
            auth.get_jwks()
