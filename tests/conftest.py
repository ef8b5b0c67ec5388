"""Shared fixtures: a fake identity provider and a wired test app."""
import base64
import hashlib
import json
import sys
import time
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jwt.algorithms import RSAAlgorithm

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import Config
from oidc_bridge.app import create_app
from oidc_bridge.provider import OIDCProvider
from oidc_bridge.stores import PendingAuthStore

ISSUER = "https://idp.example.com/realms/test"
CLIENT_ID = "room-bridge"
CLIENT_SECRET = "client-secret"
BASE_URL = "http://testserver"
JITSI_URL = "https://meet.example.com"
JITSI_SECRET = "jitsi-shared-secret-for-tests-0123456789"
JITSI_SUB = "meet.example.com"

_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def b64_half_sha256(value: str) -> str:
    digest = hashlib.sha256(value.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest[:16]).rstrip(b"=").decode()


class FakeIdP:
    """Just enough of an OIDC provider to drive the callback."""

    def __init__(self):
        self.private_key = _PRIVATE_KEY
        self.kid = "key-1"
        self.access_token = "access-token-123"
        self.token_status = 200
        self.include_id_token = True
        self.include_at_hash = True
        self.at_hash = None
        self.claims = {"sub": "user-1234", "preferred_username": "alice", "email": "alice@example.com", "name": "Alice"}
        self.nonce = None
        self.code_challenge = None
        self.requests: list[httpx.Request] = []

    def metadata(self) -> dict:
        return {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/protocol/openid-connect/auth",
            "token_endpoint": f"{ISSUER}/protocol/openid-connect/token",
            "jwks_uri": f"{ISSUER}/protocol/openid-connect/certs",
            "response_types_supported": ["code"],
            "code_challenge_methods_supported": ["S256"],
            "id_token_signing_alg_values_supported": ["RS256"],
        }

    def jwks(self) -> dict:
        jwk = json.loads(RSAAlgorithm.to_jwk(self.private_key.public_key()))
        jwk.update({"kid": self.kid, "use": "sig", "alg": "RS256"})
        return {"keys": [jwk]}

    def remember_authorization(self, location: str) -> dict:
        params = {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}
        self.nonce = params["nonce"]
        self.code_challenge = params["code_challenge"]
        return params

    def id_token(self, **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "iat": now,
            "exp": now + 300,
            "nonce": self.nonce,
            **self.claims,
        }
        if self.include_at_hash:
            claims["at_hash"] = self.at_hash or b64_half_sha256(self.access_token)
        claims.update(overrides)
        return jwt.encode(claims, self.private_key, algorithm="RS256", headers={"kid": self.kid})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        meta = self.metadata()
        url = str(request.url)

        if url == f"{ISSUER}/.well-known/openid-configuration":
            return httpx.Response(200, json=meta)
        if url == meta["jwks_uri"]:
            return httpx.Response(200, json=self.jwks())
        if url == meta["token_endpoint"] and request.method == "POST":
            return self._token(request)
        return httpx.Response(404, json={"error": "not_found"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"error": "invalid_grant"})

        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        expected_auth = "Basic " + base64.b64encode(f"{CLIENT_ID}:{CLIENT_SECRET}".encode()).decode()
        if request.headers.get("Authorization") != expected_auth:
            return httpx.Response(401, json={"error": "invalid_client"})

        challenge = base64.urlsafe_b64encode(
            hashlib.sha256(form["code_verifier"].encode()).digest()
        ).rstrip(b"=").decode()
        if challenge != self.code_challenge or form.get("code") != "good-code":
            return httpx.Response(400, json={"error": "invalid_grant"})

        body = {"access_token": self.access_token, "token_type": "Bearer", "expires_in": 300}
        if self.include_id_token:
            body["id_token"] = self.id_token()
        return httpx.Response(200, json=body)

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


@pytest.fixture
def config():
    return Config({
        "ISSUER_URL": ISSUER,
        "CLIENT_ID": CLIENT_ID,
        "CLIENT_SECRET": CLIENT_SECRET,
        "BASE_URL": BASE_URL,
        "JITSI_URL": JITSI_URL,
        "JITSI_SECRET": JITSI_SECRET,
        "JITSI_SUB": JITSI_SUB,
    })


@pytest.fixture
def idp():
    return FakeIdP()


@pytest.fixture
def provider(idp):
    provider = OIDCProvider(
        issuer_url=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=f"{BASE_URL}/callback",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(idp.handler)),
    )
    provider.metadata = idp.metadata()
    return provider


@pytest.fixture
def store():
    return PendingAuthStore()


@pytest.fixture
def client(config, provider, store):
    app = create_app(config, provider=provider, store=store)
    return TestClient(app, follow_redirects=False)


def start_login(client, idp, room="standup"):
    """Hit /room/{room} and return (session_id, authorization params)."""
    response = client.get(f"/room/{room}")
    assert response.status_code == 302
    params = idp.remember_authorization(response.headers["location"])
    return response.cookies["SESSION"], params
