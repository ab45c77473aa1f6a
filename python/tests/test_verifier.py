"""Unit tests for token verifiers.

Tests the JwksTokenVerifier (with a mocked JWKS client) and MockJwtVerifier.
"""

import time
from unittest.mock import MagicMock, patch

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.exceptions import DecodeError, PyJWKClientError

from polychat.auth.verifier import JwksTokenVerifier
from polychat.errors import ApiError, ApiErrorCode
from tests.helpers import mint_expired_token, mint_test_token, mint_token_with_bad_signature
from tests.support.test_verifier import MockJwtVerifier

ISSUER = "https://auth.example.test"
AUDIENCE = "polychat"


def _private_bytes(private_key) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="module")
def rsa_keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


@pytest.fixture
def verifier():
    return JwksTokenVerifier(
        jwks_url=f"{ISSUER}/.well-known/jwks.json",
        issuer=ISSUER + "/",
        audiences=[AUDIENCE, "polychat-web"],
        cache_ttl=3600,
    )


@pytest.fixture
def jwks_client(verifier, rsa_keypair):
    """Patch the verifier's JWKS client to hand out the test public key."""
    client = MagicMock()
    signing_key = MagicMock()
    signing_key.key = rsa_keypair[1]
    client.get_signing_key_from_jwt.return_value = signing_key

    with (
        patch.object(verifier, "_get_jwks_client", return_value=client),
        patch.object(verifier, "_refresh_jwks", return_value=client) as refresh,
    ):
        client.refresh = refresh
        yield client


def mint(private_key, sub: str = "user_alice", drop: tuple[str, ...] = (), **overrides) -> str:
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "iat": now,
        "exp": now + 3600,
        **overrides,
    }
    for claim in drop:
        payload.pop(claim)
    return jwt.encode(
        payload, _private_bytes(private_key), algorithm="RS256", headers={"kid": "test-key-id"}
    )


def assert_unauthenticated(verifier, token: str, fragment: str | None = None) -> None:
    with pytest.raises(ApiError) as exc_info:
        verifier.verify(token)
    assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
    if fragment:
        assert fragment in exc_info.value.message.lower()


class TestJwksTokenVerifier:
    def test_valid_token(self, verifier, jwks_client, rsa_keypair):
        claims = verifier.verify(mint(rsa_keypair[0]))

        assert claims["sub"] == "user_alice"
        assert claims["aud"] == AUDIENCE

    def test_issuer_trailing_slash_is_normalized(self, verifier):
        assert verifier.issuer == ISSUER

    def test_second_audience_is_accepted(self, verifier, jwks_client, rsa_keypair):
        claims = verifier.verify(mint(rsa_keypair[0], aud="polychat-web"))

        assert claims["aud"] == "polychat-web"

    def test_invalid_signature(self, verifier, jwks_client):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

        assert_unauthenticated(verifier, mint(other_key), "signature")

    def test_expired_token(self, verifier, jwks_client, rsa_keypair):
        token = mint(rsa_keypair[0], exp=int(time.time()) - 120)

        assert_unauthenticated(verifier, token, "expired")

    def test_clock_skew_accepted(self, verifier, jwks_client, rsa_keypair):
        token = mint(rsa_keypair[0], exp=int(time.time()) - 30)

        assert verifier.verify(token)["sub"] == "user_alice"

    def test_wrong_issuer(self, verifier, jwks_client, rsa_keypair):
        token = mint(rsa_keypair[0], iss="https://other.example.test")

        assert_unauthenticated(verifier, token, "issuer")

    def test_wrong_audience(self, verifier, jwks_client, rsa_keypair):
        assert_unauthenticated(verifier, mint(rsa_keypair[0], aud="someone-else"), "audience")

    def test_missing_audience(self, verifier, jwks_client, rsa_keypair):
        assert_unauthenticated(verifier, mint(rsa_keypair[0], drop=("aud",)))

    def test_missing_sub(self, verifier, jwks_client, rsa_keypair):
        assert_unauthenticated(verifier, mint(rsa_keypair[0], drop=("sub",)))

    def test_blank_sub(self, verifier, jwks_client, rsa_keypair):
        assert_unauthenticated(verifier, mint(rsa_keypair[0], sub="   "), "missing sub")

    def test_malformed_token(self, verifier, jwks_client):
        jwks_client.get_signing_key_from_jwt.side_effect = DecodeError("Not enough segments")

        assert_unauthenticated(verifier, "not-a-jwt", "format")

    def test_kid_miss_triggers_refresh(self, verifier, jwks_client, rsa_keypair):
        signing_key = jwks_client.get_signing_key_from_jwt.return_value
        jwks_client.get_signing_key_from_jwt.side_effect = [
            PyJWKClientError('Unable to find a signing key that matches: "test-key-id"'),
            signing_key,
        ]

        claims = verifier.verify(mint(rsa_keypair[0]))

        assert claims["sub"] == "user_alice"
        assert jwks_client.get_signing_key_from_jwt.call_count == 2
        jwks_client.refresh.assert_called_once()

    def test_kid_not_found_after_refresh(self, verifier, jwks_client, rsa_keypair):
        jwks_client.get_signing_key_from_jwt.side_effect = PyJWKClientError(
            "Unable to find a signing key"
        )

        assert_unauthenticated(verifier, mint(rsa_keypair[0]), "signing key")

    def test_jwks_fetch_failure(self, verifier, jwks_client):
        jwks_client.get_signing_key_from_jwt.side_effect = PyJWKClientError(
            "Fail to fetch data from the url, err: timed out"
        )

        with pytest.raises(ApiError) as exc_info:
            verifier.verify("some.fake.token")

        assert exc_info.value.code == ApiErrorCode.E_AUTH_UNAVAILABLE
        jwks_client.refresh.assert_not_called()


class TestMockJwtVerifier:
    def test_valid_token(self):
        claims = MockJwtVerifier().verify(mint_test_token("user_alice"))

        assert claims["sub"] == "user_alice"

    @pytest.mark.parametrize(
        "token_factory",
        [
            lambda: mint_expired_token("user_alice"),
            lambda: mint_token_with_bad_signature("user_alice"),
            lambda: mint_test_token("user_alice", issuer="wrong-issuer"),
            lambda: mint_test_token("user_alice", audience="wrong-audience"),
        ],
        ids=["expired", "bad-signature", "wrong-issuer", "wrong-audience"],
    )
    def test_rejects(self, token_factory):
        with pytest.raises(ApiError) as exc_info:
            MockJwtVerifier().verify(token_factory())

        assert exc_info.value.code == ApiErrorCode.E_UNAUTHENTICATED
