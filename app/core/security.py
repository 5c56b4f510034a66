"""Clerk session-token verification."""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import jwt
import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.exceptions import ServiceUnavailableError, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass
class ClerkPrincipal:
    """The verified caller; ``subject`` is the Clerk user id (our ``oauth_id``)."""

    subject: Optional[str]
    session_id: Optional[str] = None
    claims: dict = field(default_factory=dict)
    authenticated: bool = True


class ClerkAuth:
    """Verifies RS256 Clerk JWTs against the instance JWKS (cached)."""

    def __init__(
        self,
        jwks_url: Optional[str] = None,
        issuer: Optional[str] = None,
        authorized_parties=None,
        cache_ttl: int = 3600,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.authorized_parties = list(authorized_parties or [])
        self._cache_ttl = cache_ttl
        self._jwks_cache = None
        self._jwks_cache_time = 0.0
        self._lock = threading.Lock()

    def get_jwks(self) -> dict:
        now = time.time()
        with self._lock:
            if self._jwks_cache and (now - self._jwks_cache_time) < self._cache_ttl:
                return self._jwks_cache

        if not self.jwks_url:
            raise ServiceUnavailableError("Authentication is not configured")

        try:
            jwks = self._fetch_jwks()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch Clerk JWKS: {e}")
            raise ServiceUnavailableError("Authentication provider unavailable")

        with self._lock:
            self._jwks_cache = jwks
            self._jwks_cache_time = now
        return jwks

    @retry(
        retry=retry_if_exception_type(requests.exceptions.RequestException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    def _fetch_jwks(self) -> dict:
        response = requests.get(self.jwks_url, timeout=10)
        response.raise_for_status()
        return response.json()

    def _public_key(self, kid: str):
        for key in self.get_jwks().get("keys", []):
            if key.get("kid") == kid:
                return jwt.algorithms.RSAAlgorithm.from_jwk(key)
        return None

    def verify_token(self, token: str) -> dict:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError(f"Invalid token: {e}")

        kid = header.get("kid")
        if not kid:
            raise UnauthorizedError("Invalid token: missing kid")

        public_key = self._public_key(kid)
        if public_key is None:
            raise UnauthorizedError("Invalid token: unknown kid")

        options = {"require": ["exp", "iat", "sub"], "verify_iss": bool(self.issuer)}
        try:
            claims = jwt.decode(
                token,
                public_key,
                algorithms=["RS256"],
                issuer=self.issuer,
                options=options,
                leeway=5,
            )
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError(f"Invalid token: {e}")

        azp = claims.get("azp")
        if self.authorized_parties and azp and azp not in self.authorized_parties:
            raise UnauthorizedError("Invalid token: unauthorized party")

        return claims


clerk_auth = ClerkAuth(
    jwks_url=settings.CLERK_JWKS_URL,
    issuer=settings.CLERK_ISSUER,
    authorized_parties=settings.CLERK_AUTHORIZED_PARTIES,
    cache_ttl=settings.JWKS_CACHE_TTL,
)

bearer_scheme = HTTPBearer(auto_error=False)


def require_clerk_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> ClerkPrincipal:
    """
    FastAPI dependency gating every /api/v1 route.

    Fails closed: a missing or invalid token is a 401. CLERK_AUTH_REQUIRED=false
    lets the request through as an anonymous principal (local development only).
    """
    if credentials is None or not credentials.credentials:
        if not settings.CLERK_AUTH_REQUIRED:
            logger.warning("Unauthenticated request allowed (CLERK_AUTH_REQUIRED=false)")
            return ClerkPrincipal(subject=None, authenticated=False)
        raise UnauthorizedError("Missing bearer token")

    try:
        claims = clerk_auth.verify_token(credentials.credentials)
    except UnauthorizedError:
        if not settings.CLERK_AUTH_REQUIRED:
            logger.warning("Invalid token allowed (CLERK_AUTH_REQUIRED=false)")
            return ClerkPrincipal(subject=None, authenticated=False)
        raise

    return ClerkPrincipal(subject=claims.get("sub"), session_id=claims.get("sid"), claims=claims)
