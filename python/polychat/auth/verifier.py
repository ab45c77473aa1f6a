"""Token verification implementations.

Provides:
- TokenVerifier: Protocol for token verification
- JwksTokenVerifier: Verifier backed by the identity provider's JWKS endpoint

Note: Test-only verifiers are in tests/support/test_verifier.py
"""

import logging
import threading
from typing import Any, Protocol

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from polychat.errors import ApiError, ApiErrorCode

logger = logging.getLogger(__name__)

# Clock skew allowance in seconds
CLOCK_SKEW_SECONDS = 60


class TokenVerifier(Protocol):
    """Protocol for token verification."""

    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid, expired, or malformed.
            ApiError(E_AUTH_UNAVAILABLE): Infrastructure failure (JWKS unreachable).
        """
        ...


class JwksTokenVerifier:
    """Production token verifier using the identity provider's JWKS.

    Validates:
    - Signature via JWKS
    - Algorithm: RS256 or ES256 (JWKS determines which key is used)
    - exp with ±60s clock skew
    - iss matches configured issuer (after normalization)
    - aud must be in configured audience list
    - sub must be a non-empty string (the user id)
    """

    def __init__(
        self,
        jwks_url: str,
        issuer: str,
        audiences: list[str],
        cache_ttl: int = 3600,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl

        self._jwks_client: PyJWKClient | None = None
        self._jwks_lock = threading.Lock()

    def _new_client(self) -> PyJWKClient:
        return PyJWKClient(self.jwks_url, cache_keys=True, lifespan=self.cache_ttl)

    def _get_jwks_client(self) -> PyJWKClient:
        with self._jwks_lock:
            if self._jwks_client is None:
                self._jwks_client = self._new_client()
            return self._jwks_client

    def _refresh_jwks(self) -> PyJWKClient:
        """Replace the client to drop cached keys (called on kid miss)."""
        with self._jwks_lock:
            self._jwks_client = self._new_client()
            return self._jwks_client

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a bearer JWT.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid.
            ApiError(E_AUTH_UNAVAILABLE): JWKS fetch failed.
        """
        try:
            signing_key = self._get_signing_key(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", extra={"reason": "jwks_unavailable", "error": str(e)})
            raise ApiError(
                ApiErrorCode.E_AUTH_UNAVAILABLE,
                "Authentication service unavailable",
            ) from e
        except DecodeError as e:
            logger.warning("auth_failure", extra={"reason": "decode_error"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token format") from e

        return self._decode_claims(token, signing_key.key)

    def _decode_claims(self, token: str, key: Any) -> dict[str, Any]:
        """Check signature and claims against `key`."""
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=["RS256", "ES256"],
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"], "verify_aud": True},
            )
        except ExpiredSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "expired_token"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Token expired") from e
        except InvalidSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_signature"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token signature") from e
        except InvalidIssuerError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_issuer"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token issuer") from e
        except InvalidAudienceError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_audience"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token audience") from e
        except InvalidTokenError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_token", "error": str(e)})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token") from e

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub.strip():
            logger.warning("auth_failure", extra={"reason": "missing_sub"})
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: missing sub")

        return payload

    def _get_signing_key(self, token: str) -> Any:
        """Get the signing key for the token, refreshing JWKS once on kid miss."""
        client = self._get_jwks_client()

        try:
            return client.get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find" not in str(e) and "kid" not in str(e).lower():
                raise
            logger.info("Refreshing JWKS due to kid miss")
            client = self._refresh_jwks()
            try:
                return client.get_signing_key_from_jwt(token)
            except PyJWKClientError as retry_e:
                logger.warning("auth_failure", extra={"reason": "kid_not_found"})
                raise ApiError(
                    ApiErrorCode.E_UNAUTHENTICATED,
                    "Invalid token: signing key not found",
                ) from retry_e
