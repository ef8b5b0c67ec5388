"""Callback validation for the room login flow.

validate_callback() runs a fixed sequence of checks against the identity
provider's redirect. Each step either returns what the next one needs or
raises the AppError that ends the request; later steps never run after a
failure. The pending attempt is consumed before anything else is checked,
so every attempt is usable once, whatever the outcome.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional

import jwt

from oidc_bridge.errors import (
    InvalidAccessToken,
    InvalidCode,
    InvalidIdTokenNonce,
    InvalidSession,
    InvalidState,
    MissingAccessTokenHash,
    MissingIdToken,
    ProviderError,
    UnsupportedSigningAlgorithm,
)
from oidc_bridge.jwt_utils import access_token_hash
from oidc_bridge.provider import OIDCProvider
from oidc_bridge.stores import PendingAttempt, PendingAuthStore, is_session_id

logger = logging.getLogger(__name__)

# Clock skew tolerated on the ID token's exp/iat
ID_TOKEN_LEEWAY_SECONDS = 60


@dataclass(frozen=True)
class IdentityClaims:
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    avatar: Optional[str] = None


async def validate_callback(
    store: PendingAuthStore,
    provider: OIDCProvider,
    session_id: Optional[str],
    state: Optional[str],
    code: Optional[str],
    error: Optional[str] = None,
) -> tuple[IdentityClaims, PendingAttempt]:
    """Check a callback end to end and return the user and their attempt."""
    attempt = await _consume_attempt(store, session_id)
    _check_state(attempt, state)
    tokens = await _exchange_code(provider, attempt, code, error)
    id_token = _require_id_token(tokens)
    claims = await _verify_id_token(provider, id_token, attempt.nonce)
    expected_hash = _require_access_token_hash(claims)
    _check_access_token_hash(id_token, tokens["access_token"], expected_hash)
    return resolve_identity(claims), attempt


async def _consume_attempt(store: PendingAuthStore, session_id: Optional[str]) -> PendingAttempt:
    if not is_session_id(session_id):
        raise InvalidSession()

    attempt = await store.consume(session_id)
    if attempt is None:
        raise InvalidSession()
    return attempt


def _check_state(attempt: PendingAttempt, state: Optional[str]) -> None:
    if state is None or not hmac.compare_digest(state.encode(), attempt.csrf_token.encode()):
        raise InvalidState()


async def _exchange_code(
    provider: OIDCProvider,
    attempt: PendingAttempt,
    code: Optional[str],
    error: Optional[str],
) -> dict[str, Any]:
    if error:
        logger.info(f"[CALLBACK] Identity provider returned error: {error}")
        raise InvalidCode()
    if not code:
        raise InvalidCode()

    try:
        return await provider.exchange_code(code, attempt.pkce_verifier)
    except ProviderError as e:
        logger.info(f"[CALLBACK] Code exchange rejected: {e}")
        raise InvalidCode() from e


def _require_id_token(tokens: dict[str, Any]) -> str:
    id_token = tokens.get("id_token")
    if not id_token or not isinstance(id_token, str):
        raise MissingIdToken()
    return id_token


async def _verify_id_token(provider: OIDCProvider, id_token: str, nonce: str) -> dict[str, Any]:
    try:
        key = await provider.signing_key(id_token)
        claims = jwt.decode(
            id_token,
            key,
            algorithms=provider.allowed_algorithms,
            audience=provider.client_id,
            issuer=provider.issuer,
            leeway=ID_TOKEN_LEEWAY_SECONDS,
            options={"require": ["iss", "sub", "aud", "exp", "iat"]},
        )
    except (ProviderError, jwt.PyJWTError) as e:
        logger.info(f"[CALLBACK] ID token rejected: {e}")
        raise InvalidIdTokenNonce() from e

    # A token issued to several audiences must name us as authorized party
    audiences = claims["aud"] if isinstance(claims["aud"], list) else [claims["aud"]]
    if len(audiences) > 1 and claims.get("azp") != provider.client_id:
        logger.info("[CALLBACK] ID token azp does not match client id")
        raise InvalidIdTokenNonce()

    token_nonce = claims.get("nonce")
    if not isinstance(token_nonce, str) or not hmac.compare_digest(token_nonce.encode(), nonce.encode()):
        logger.info("[CALLBACK] ID token nonce mismatch")
        raise InvalidIdTokenNonce()
    return claims


def _require_access_token_hash(claims: dict[str, Any]) -> str:
    expected = claims.get("at_hash")
    if not expected or not isinstance(expected, str):
        raise MissingAccessTokenHash()
    return expected


def _check_access_token_hash(id_token: str, access_token: str, expected: str) -> None:
    try:
        algorithm = jwt.get_unverified_header(id_token).get("alg")
    except jwt.PyJWTError as e:
        raise UnsupportedSigningAlgorithm() from e
    if not algorithm or not isinstance(algorithm, str):
        raise UnsupportedSigningAlgorithm()

    try:
        actual = access_token_hash(access_token, algorithm)
    except NotImplementedError as e:
        logger.info(f"[CALLBACK] Cannot hash access token for {algorithm}")
        raise UnsupportedSigningAlgorithm() from e
    except UnicodeEncodeError as e:
        logger.info("[CALLBACK] Access token is not ASCII, cannot hash it")
        raise UnsupportedSigningAlgorithm() from e

    if not hmac.compare_digest(actual.encode(), expected.encode()):
        raise InvalidAccessToken()


def resolve_identity(claims: dict[str, Any]) -> IdentityClaims:
    """Map verified ID token claims to the user shown in the room."""
    user_id = claims.get("preferred_username") or claims["sub"]
    return IdentityClaims(
        user_id=str(user_id),
        email=claims.get("email"),
        name=claims.get("name"),
        avatar=claims.get("picture"),
    )
