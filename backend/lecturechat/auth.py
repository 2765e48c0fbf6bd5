"""Identity-token verification and FastAPI security dependencies.

The browser signs in with Google and stores the resulting OpenID Connect
ID token in a cookie (`id_token` by default). Every request that needs a
user verifies that token on its own: signature against Google's published
keys, audience equal to our OAuth client id, a Google issuer and an
unexpired `exp`. Nothing about the signed-in user is kept between
requests.

`get_identity` raises HTTPException(401) when no valid token is present;
`get_optional_identity` returns `None` instead, for status endpoints.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings

logger = logging.getLogger("lecturechat.auth")

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
ID_TOKEN_ALGORITHMS = ["RS256"]

bearer_scheme = HTTPBearer(auto_error=False)


class InvalidTokenError(Exception):
    """The ID token is missing, malformed, expired or not ours."""


@dataclass(frozen=True)
class Identity:
    """The verified subject of an ID token."""
    subject: str
    name: Optional[str] = None
    email: Optional[str] = None


class TokenVerifier:
    """Verify ID tokens issued for a single OAuth client.

    `key_resolver` maps a raw token to the public key that must have
    signed it. By default keys come from the provider's JWKS endpoint via
    `jwt.PyJWKClient`, which caches them.
    """

    def __init__(
        self,
        client_id: str,
        jwks_url: str = "",
        issuers=GOOGLE_ISSUERS,
        key_resolver: Optional[Callable[[str], Any]] = None,
    ):
        self.client_id = client_id
        self.issuers = tuple(issuers)
        if key_resolver is None:
            jwks_client = jwt.PyJWKClient(jwks_url)
            key_resolver = lambda token: jwks_client.get_signing_key_from_jwt(token).key
        self._key_resolver = key_resolver

    def verify(self, token: str) -> Identity:
        """Return the token's identity or raise `InvalidTokenError`."""
        if not token:
            raise InvalidTokenError("missing token")
        if not self.client_id:
            raise InvalidTokenError("no OAuth client id configured")
        try:
            key = self._key_resolver(token)
            payload = jwt.decode(
                token,
                key,
                algorithms=ID_TOKEN_ALGORITHMS,
                audience=self.client_id,
                options={"require": ["exp", "iss", "sub", "aud"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("token expired") from exc
        except jwt.PyJWTError as exc:
            raise InvalidTokenError(f"invalid token: {exc}") from exc
        if payload.get("iss") not in self.issuers:
            raise InvalidTokenError("unexpected token issuer")
        return Identity(subject=str(payload["sub"]), name=payload.get("name"), email=payload.get("email"))


@lru_cache(maxsize=1)
def get_token_verifier() -> TokenVerifier:
    """Process-wide verifier for the configured Google OAuth client."""
    return TokenVerifier(settings.GOOGLE_CLIENT_ID, settings.GOOGLE_JWKS_URL)


def _token_from_request(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(settings.ID_TOKEN_COOKIE)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


def get_optional_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Optional[Identity]:
    """FastAPI dependency returning the caller's identity, or None if signed out."""
    token = _token_from_request(request, credentials)
    if not token:
        return None
    try:
        return verifier.verify(token)
    except InvalidTokenError as exc:
        logger.info("token_rejected reason=%s", exc)
        return None


def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Identity:
    """FastAPI dependency that returns the authenticated caller.

    Raises HTTPException(401) for a missing, invalid or expired token.
    """
    token = _token_from_request(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="not signed in")
    try:
        return verifier.verify(token)
    except InvalidTokenError as exc:
        logger.info("token_rejected reason=%s", exc)
        raise HTTPException(status_code=401, detail=str(exc))
