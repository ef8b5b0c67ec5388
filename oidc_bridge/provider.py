"""Client for the upstream OpenID Connect identity provider.

Handles:
- Discovery (/.well-known/openid-configuration)
- Authorization URL construction with PKCE (S256)
- Authorization code exchange at the token endpoint
- ID token signing keys (JWKS, or the client secret for HS* tokens)

All calls go through one shared httpx.AsyncClient. Nothing here retries.
"""

import base64
import hashlib
import logging
import secrets
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx
import jwt

from oidc_bridge.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ("openid", "profile", "email")
DEFAULT_SIGNING_ALGORITHMS = ["RS256"]
REQUIRED_METADATA = ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")


def generate_pkce_pair() -> tuple[str, str]:
    """Return (code_verifier, code_challenge) for the S256 method."""
    code_verifier = secrets.token_urlsafe(64)
    code_challenge = base64.urlsafe_b64encode(
        hashlib.sha256(code_verifier.encode()).digest()
    ).rstrip(b"=").decode()
    return code_verifier, code_challenge


class OIDCProvider:
    """A single configured identity provider."""

    def __init__(
        self,
        issuer_url: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.issuer_url = issuer_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self.metadata: dict[str, Any] = {}
        self._jwks: Optional[jwt.PyJWKSet] = None

    @property
    def issuer(self) -> str:
        return self.metadata.get("issuer", self.issuer_url)

    @property
    def allowed_algorithms(self) -> list[str]:
        algorithms = self.metadata.get("id_token_signing_alg_values_supported") or DEFAULT_SIGNING_ALGORITHMS
        return [alg for alg in algorithms if alg.lower() != "none"]

    async def aclose(self) -> None:
        await self._http.aclose()

    # ============== Discovery ==============

    async def discover(self) -> dict[str, Any]:
        """Fetch and check the provider metadata document."""
        url = f"{self.issuer_url}/.well-known/openid-configuration"
        document = await self._get_json(url)

        for key in REQUIRED_METADATA:
            if not document.get(key):
                raise ProviderError(f"discovery document is missing {key}")

        if document["issuer"].rstrip("/") != self.issuer_url:
            raise ProviderError(
                f"discovery issuer mismatch: expected {self.issuer_url}, got {document['issuer']}"
            )

        methods = document.get("code_challenge_methods_supported")
        if methods is not None and "S256" not in methods:
            logger.warning("[OIDC] Provider does not advertise S256 PKCE, sending it anyway")

        self.metadata = document
        logger.info(f"[OIDC] Discovered provider metadata for {document['issuer']}")
        return document

    # ============== Authorization ==============

    def authorization_url(
        self,
        state: str,
        nonce: str,
        code_challenge: str,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
    ) -> str:
        """Build the authorization code flow URL for the browser redirect."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        endpoint = self.metadata["authorization_endpoint"]
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    # ============== Token Exchange ==============

    async def exchange_code(self, code: str, code_verifier: str) -> dict[str, Any]:
        """Redeem an authorization code.

        Raises:
            ProviderError: On transport failure, a non-2xx answer or a body
                that is not a token response.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        }
        # client_secret_basic, credentials form-encoded per RFC 6749 2.3.1
        auth = httpx.BasicAuth(quote(self.client_id, safe=""), quote(self.client_secret, safe=""))

        try:
            response = await self._http.post(
                self.metadata["token_endpoint"],
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"token request failed: {e}") from e

        if response.status_code != 200:
            error = _error_code(response)
            raise ProviderError(f"token endpoint returned {response.status_code} ({error})")

        try:
            tokens = response.json()
        except ValueError as e:
            raise ProviderError("token endpoint returned invalid JSON") from e

        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise ProviderError("token response has no access_token")
        if str(tokens.get("token_type", "")).lower() != "bearer":
            raise ProviderError(f"unexpected token_type {tokens.get('token_type')!r}")
        return tokens

    # ============== Signing Keys ==============

    async def signing_key(self, id_token: str) -> Any:
        """Find the key that verifies this ID token.

        HS* tokens are verified with the client secret. Everything else uses
        the provider JWKS, refetched once when the kid is not known yet.

        Raises:
            ProviderError: If the JWKS cannot be fetched or has no such key.
            jwt.PyJWTError: If the token header cannot be read.
        """
        header = jwt.get_unverified_header(id_token)
        algorithm = header.get("alg")
        if not isinstance(algorithm, str):
            raise jwt.InvalidAlgorithmError(f"unusable alg header {algorithm!r}")
        if algorithm.startswith("HS"):
            return self.client_secret.encode()

        kid = header.get("kid")
        if self._jwks is None:
            self._jwks = await self._fetch_jwks()

        key = _find_key(self._jwks, kid)
        if key is None:
            logger.info("[OIDC] Signing key not in cached JWKS, refetching")
            self._jwks = await self._fetch_jwks()
            key = _find_key(self._jwks, kid)
        if key is None:
            raise ProviderError(f"no signing key for kid {kid!r}")
        return key.key

    async def _fetch_jwks(self) -> jwt.PyJWKSet:
        document = await self._get_json(self.metadata["jwks_uri"])
        try:
            return jwt.PyJWKSet.from_dict(document)
        except jwt.PyJWTError as e:
            raise ProviderError(f"unusable JWKS: {e}") from e

    async def _get_json(self, url: str) -> dict[str, Any]:
        try:
            response = await self._http.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            document = response.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"GET {url} returned invalid JSON") from e

        if not isinstance(document, dict):
            raise ProviderError(f"GET {url} did not return an object")
        return document


def _find_key(jwks: jwt.PyJWKSet, kid: Optional[str]) -> Optional[jwt.PyJWK]:
    signing_keys = [key for key in jwks.keys if key.public_key_use in (None, "sig")]
    if kid is None:
        # Without a kid the choice is only unambiguous for a single key
        return signing_keys[0] if len(signing_keys) == 1 else None
    for key in signing_keys:
        if key.key_id == kid:
            return key
    return None


def _error_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "unknown_error"
    if isinstance(body, dict):
        return str(body.get("error", "unknown_error"))
    return "unknown_error"
