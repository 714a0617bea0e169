"""
Bearer token verification against an external identity provider.

When an issuer and audience are configured, tokens are RS256 JWTs checked
against the issuer's published signing keys (JWKS). When they are not, the
service runs open: every request proceeds as unauthenticated and handlers
receive ``None`` instead of an identity.
"""

from __future__ import annotations

import logging
from typing import Optional

import jwt

from .configuration import AuthSettings
from .errors import UnauthorizedError
from .models import UserIdentity

logger = logging.getLogger(__name__)


class TokenVerifier:
    def __init__(
        self,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        jwks_uri: Optional[str] = None,
        jwks_client: Optional[jwt.PyJWKClient] = None,
    ) -> None:
        self.issuer = issuer or None
        self.audience = audience or None
        self.jwks_uri = jwks_uri or (f"{issuer.rstrip('/')}/discovery/v2.0/keys" if issuer else None)
        self._jwks_client = jwks_client

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "TokenVerifier":
        return cls(issuer=settings.issuer, audience=settings.audience, jwks_uri=settings.jwks_uri)

    @property
    def is_configured(self) -> bool:
        return bool(self.issuer and self.audience)

    @property
    def jwks_client(self) -> jwt.PyJWKClient:
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(self.jwks_uri)
        return self._jwks_client

    def verify(self, token: str) -> UserIdentity:
        """
        Verify a token and extract the caller's identity.

        Raises:
            UnauthorizedError: ``invalid_token`` on any verification failure
        """
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.audience,
                issuer=self.issuer,
            )
        except jwt.PyJWTError as exc:
            logger.info(f"Rejected bearer token: {exc}")
            raise UnauthorizedError("invalid_token", str(exc)) from exc

        subject = claims.get("sub")
        if not subject:
            raise UnauthorizedError("invalid_token", "Token has no subject")

        return UserIdentity(
            subject_id=subject,
            email=claims.get("preferred_username") or claims.get("email"),
            name=claims.get("name"),
        )


def authenticate(verifier: TokenVerifier, authorization: Optional[str]) -> Optional[UserIdentity]:
    """
    Resolve the Authorization header to an identity.

    Returns:
        The verified identity, or None when authentication is not configured

    Raises:
        UnauthorizedError: ``missing_token`` or ``invalid_token`` when it is
    """
    if not verifier.is_configured:
        return None

    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("missing_token", "Bearer token required")

    return verifier.verify(authorization[len("Bearer "):].strip())
