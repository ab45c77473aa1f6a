"""Test-only token verifiers.

MockJwtVerifier runs the production claim checks of JwksTokenVerifier but
takes its public key from a locally generated RSA keypair instead of a JWKS
endpoint, so config mistakes in issuer/audience handling still surface in tests.
It is NOT part of the runtime code and should not be imported in production.
"""

import threading
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from polychat.auth.verifier import JwksTokenVerifier
from polychat.errors import ApiError, ApiErrorCode

_keypair_lock = threading.Lock()
_keypair: tuple[bytes, bytes] | None = None


def _get_keypair() -> tuple[bytes, bytes]:
    """PEM (private, public) bytes, generated once per test session."""
    global _keypair
    with _keypair_lock:
        if _keypair is None:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            _keypair = (
                private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption(),
                ),
                private_key.public_key().public_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PublicFormat.SubjectPublicKeyInfo,
                ),
            )
        return _keypair


class MockJwtVerifier(JwksTokenVerifier):
    """Verifies tokens minted by tests.helpers with the local keypair.

    Usage:
        verifier = MockJwtVerifier()
        claims = verifier.verify(token)
    """

    def __init__(self, issuer: str = "test-issuer", audiences: list[str] | None = None):
        super().__init__(
            jwks_url="https://auth.test/.well-known/jwks.json",
            issuer=issuer,
            audiences=audiences or ["test-audience"],
        )

    @staticmethod
    def get_private_key() -> bytes:
        """Private key for signing test tokens."""
        return _get_keypair()[0]

    def verify(self, token: str) -> dict[str, Any]:
        return self._decode_claims(token, _get_keypair()[1])


class UnavailableVerifier:
    """Simulates an identity provider whose keys cannot be fetched."""

    def verify(self, token: str) -> dict[str, Any]:
        raise ApiError(ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable")
