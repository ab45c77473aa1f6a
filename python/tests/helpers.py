"""Test helpers for authentication.

Provides:
- Token minting for test authentication
- Header generation for test requests
"""

import time

import jwt

from tests.support.test_verifier import MockJwtVerifier

# Default test token settings
DEFAULT_ISSUER = "test-issuer"
DEFAULT_AUDIENCE = "test-audience"
DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    user_id: str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = DEFAULT_ISSUER,
    audience: str = DEFAULT_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a valid test JWT token.

    Args:
        user_id: The user ID to set as the `sub` claim.
        expires_in: Token validity in seconds from now.
        issuer: The `iss` claim value.
        audience: The `aud` claim value.
        **extra_claims: Additional claims to include in the token.
    """
    now = int(time.time())
    payload = {
        "sub": user_id,
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, MockJwtVerifier.get_private_key(), algorithm="RS256")


def mint_expired_token(user_id: str) -> str:
    """Mint a token that expired 1 hour ago (beyond clock skew)."""
    return mint_test_token(user_id, expires_in=-3600)


def mint_token_with_bad_signature(user_id: str) -> str:
    """Mint a token signed with a different key."""
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_key_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    now = int(time.time())
    payload = {
        "sub": user_id,
        "iss": DEFAULT_ISSUER,
        "aud": DEFAULT_AUDIENCE,
        "iat": now,
        "exp": now + DEFAULT_EXPIRES_IN,
    }
    return jwt.encode(payload, private_key_bytes, algorithm="RS256")


def auth_headers(user_id: str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}
