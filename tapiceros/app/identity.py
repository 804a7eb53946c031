"""Bearer token verification against the identity provider's published keys."""
from __future__ import annotations

import json
import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict
from urllib import error as urllib_error, request as urllib_request

from .. import app_context
from .errors import AuthenticationError, AuthorizationError, NotFoundError, UpstreamServiceError
from .schemas.users import User

logger = logging.getLogger(__name__)

_ALGORITHMS = ["RS256"]
_JWKS_TIMEOUT_SECONDS = 5.0


class Identity(BaseModel):
    """Claims of a verified access token."""

    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    email_verified: bool = False

    model_config = ConfigDict(frozen=True)


def _fetch_jwks(url: str) -> Dict[str, Any]:
    try:
        with urllib_request.urlopen(url, timeout=_JWKS_TIMEOUT_SECONDS) as response:
            body = response.read()
        return json.loads(body.decode("utf-8"))
    except (urllib_error.URLError, urllib_error.HTTPError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Failed to fetch JWKS", extra={"jwks_url": url, "error": str(exc)})
        raise UpstreamServiceError("Unable to reach identity provider", service="auth0") from exc


class IdentityVerifier:
    """Verifies RS256 access tokens and caches the signing keys."""

    def __init__(
        self,
        *,
        domain: Optional[str],
        audience: Optional[str],
        issuer: Optional[str] = None,
        cache_seconds: int = 600,
        fetch_jwks: Callable[[str], Dict[str, Any]] = _fetch_jwks,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.domain = domain
        self.audience = audience
        self.issuer = issuer or (f"https://{domain}/" if domain else None)
        self.cache_seconds = cache_seconds
        self._fetch_jwks = fetch_jwks
        self._clock = clock
        self._keys: List[Dict[str, Any]] = []
        self._fetched_at: Optional[float] = None
        self._lock = Lock()

    @property
    def jwks_url(self) -> str:
        return f"https://{self.domain}/.well-known/jwks.json"

    def _signing_keys(self, *, refresh: bool = False) -> List[Dict[str, Any]]:
        with self._lock:
            now = self._clock()
            stale = self._fetched_at is None or now - self._fetched_at >= self.cache_seconds
            if refresh or stale:
                document = self._fetch_jwks(self.jwks_url)
                self._keys = list(document.get("keys") or [])
                self._fetched_at = now
            return self._keys

    def _key_for(self, kid: Optional[str]) -> Dict[str, Any]:
        def _match(keys: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            for key in keys:
                if kid is None or key.get("kid") == kid:
                    return key
            return None

        key = _match(self._signing_keys())
        if key is None:
            # Keys rotate; retry once with a fresh document.
            key = _match(self._signing_keys(refresh=True))
        if key is None:
            raise AuthenticationError("Invalid or expired token")
        return key

    def verify(self, token: str) -> Identity:
        if not self.domain or not self.audience:
            raise AuthenticationError("Authentication is not configured")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthenticationError("Invalid or expired token") from exc

        key = self._key_for(header.get("kid"))
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=_ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError as exc:
            logger.info("Token validation failed", extra={"reason": str(exc)})
            raise AuthenticationError("Invalid or expired token") from exc

        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("User information not found in token")
        return Identity(
            subject=subject,
            email=claims.get("email"),
            name=claims.get("name"),
            picture=claims.get("picture"),
            email_verified=bool(claims.get("email_verified", False)),
        )


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    token = _bearer_token(authorization)
    if token is None:
        raise AuthenticationError("No token provided")
    return app_context.get_identity_verifier().verify(token)


def get_current_user(identity: Identity = Depends(get_current_identity)) -> User:
    from .services import users as users_service

    user = users_service.get_user_by_auth0_id(identity.subject)
    if user is None or not user.is_active:
        raise NotFoundError("User not found. Please complete registration")
    return user


def get_optional_current_user(authorization: Optional[str] = Header(None)) -> Optional[User]:
    token = _bearer_token(authorization)
    if token is None:
        return None
    try:
        identity = app_context.get_identity_verifier().verify(token)
    except AuthenticationError:
        return None
    from .services import users as users_service

    user = users_service.get_user_by_auth0_id(identity.subject)
    if user is None or not user.is_active:
        return None
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise AuthorizationError("Insufficient permissions")
    return current_user
