"""Tests for room token minting and at_hash computation."""
import base64
import hashlib

import jwt
import pytest

from oidc_bridge.errors import TokenMintingError
from oidc_bridge.jwt_utils import (
    ROOM_TOKEN_EXPIRE_SECONDS,
    access_token_hash,
    create_room_token,
)

SECRET = "a-shared-secret-that-is-long-enough-for-hs256"


def _mint(**overrides):
    kwargs = dict(
        user_id="alice",
        email="alice@example.com",
        name="Alice",
        avatar=None,
        audience="jitsi",
        issuer="jitsi",
        subject="meet.example.com",
        room="standup",
        secret=SECRET,
    )
    kwargs.update(overrides)
    return create_room_token(**kwargs)


def _decode(token):
    return jwt.decode(token, SECRET, algorithms=["HS256"], audience="jitsi", options={"verify_exp": False, "verify_iat": False})


class TestCreateRoomToken:
    def test_claims_shape(self):
        claims = _decode(_mint(now=1_700_000_000))

        assert claims == {
            "context": {
                "user": {"avatar": None, "name": "Alice", "email": "alice@example.com", "id": "alice"},
                "group": None,
            },
            "aud": "jitsi",
            "iss": "jitsi",
            "sub": "meet.example.com",
            "room": "standup",
            "iat": 1_700_000_000,
            "exp": 1_700_000_000 + 86400,
        }

    def test_header_is_hs256(self):
        assert jwt.get_unverified_header(_mint())["alg"] == "HS256"

    @pytest.mark.parametrize("now", [0, 1, 1_700_000_000, 2_000_000_000.9])
    def test_lifetime_is_one_day(self, now):
        claims = _decode(_mint(now=now))

        assert isinstance(claims["iat"], int)
        assert claims["exp"] - claims["iat"] == ROOM_TOKEN_EXPIRE_SECONDS == 86400

    def test_optional_fields_absent(self):
        claims = _decode(_mint(email=None, name=None))

        assert claims["context"]["user"]["email"] is None
        assert claims["context"]["user"]["name"] is None

    def test_empty_secret_fails(self):
        with pytest.raises(TokenMintingError):
            _mint(secret="")

    def test_unserializable_claim_fails(self):
        with pytest.raises(TokenMintingError):
            _mint(avatar=object())


class TestAccessTokenHash:
    @pytest.mark.parametrize("algorithm,hash_fn", [
        ("RS256", hashlib.sha256),
        ("ES384", hashlib.sha384),
        ("PS512", hashlib.sha512),
        ("HS256", hashlib.sha256),
    ])
    def test_left_half_of_hash(self, algorithm, hash_fn):
        digest = hash_fn(b"some-access-token").digest()
        expected = base64.urlsafe_b64encode(digest[: len(digest) // 2]).rstrip(b"=").decode()

        assert access_token_hash("some-access-token", algorithm) == expected

    def test_oidc_core_example(self):
        # OpenID Connect Core, appendix A.3
        token = "jHkWEdUXMU1BwAsC4vtUsZwnNvTIxEl0z9K3vx5KF0Y"
        assert access_token_hash(token, "RS256") == "77QmUPtjPfzWtF2AnpK9RQ"

    @pytest.mark.parametrize("algorithm", ["none", "NONE", "", "XYZ256"])
    def test_unsupported(self, algorithm):
        with pytest.raises(NotImplementedError):
            access_token_hash("token", algorithm)
