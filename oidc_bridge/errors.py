"""Error kinds for the room login flow.

Every AppError is terminal for its request and is rendered to the client as
{"error": kind} with the class status code. Nothing else leaks.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    kind = "internal_server_error"
    status_code = 500

    def __str__(self) -> str:
        return self.kind


class InvalidSession(AppError):
    """Missing, malformed, unknown, expired or already used session."""

    kind = "invalid_session"
    status_code = 401


class InvalidState(AppError):
    """Callback state does not match the stored CSRF token."""

    kind = "invalid_state"
    status_code = 400


class InvalidCode(AppError):
    """The identity provider refused the code exchange, or could not be reached."""

    kind = "invalid_code"
    status_code = 400


class MissingIdToken(AppError):
    kind = "missing_id_token"
    status_code = 502


class InvalidIdTokenNonce(AppError):
    """ID token signature, claims or nonce failed verification."""

    kind = "invalid_id_token_nonce"
    status_code = 401


class MissingAccessTokenHash(AppError):
    kind = "missing_access_token_hash"
    status_code = 401


class UnsupportedSigningAlgorithm(AppError):
    kind = "unsupported_signing_algorithm"
    status_code = 401


class InvalidAccessToken(AppError):
    """at_hash in the ID token does not match the access token."""

    kind = "invalid_access_token"
    status_code = 401


class InternalServerError(AppError):
    kind = "internal_server_error"
    status_code = 500


class ProviderError(Exception):
    """Transport or protocol failure talking to the identity provider."""


class TokenMintingError(Exception):
    """The room token could not be built or signed."""


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if not isinstance(exc, InternalServerError):
        logger.info(f"[CALLBACK] Rejected {request.url.path}: {exc.kind}")
    return JSONResponse({"error": exc.kind}, status_code=exc.status_code)
