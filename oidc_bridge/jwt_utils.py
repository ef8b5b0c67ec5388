"""JWT utilities for room tokens and ID token hashes.

Room tokens are stateless HS256 JWTs accepted by the conference server in the
?jwt= query parameter. They carry no reference back to the login attempt.
"""

import base64
import logging
import time
from typing import Optional

import jwt

from oidc_bridge.errors import TokenMintingError

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
ROOM_TOKEN_EXPIRE_SECONDS = 24 * 60 * 60  # 24 hours


def create_room_token(
    user_id: str,
    email: Optional[str],
    name: Optional[str],
    avatar: Optional[str],
    audience: str,
    issuer: str,
    subject: str,
    room: str,
    secret: str,
    now: Optional[int] = None,
) -> str:
    """Create a signed room token.

    Args:
        user_id: Resolved user identifier (preferred_username or sub)
        email: The user's email address, if known
        name: The user's display name, if known
        avatar: URL of the user's picture, if known
        audience: Token audience expected by the conference server
        issuer: Token issuer expected by the conference server
        subject: Conference server domain/tenant
        room: Room the token grants access to
        secret: Shared HS256 secret
        now: Issue time override (Unix seconds)

    Returns:
        A signed JWT token string

    Raises:
        TokenMintingError: If the claims cannot be encoded or signed
    """
    if not secret:
        raise TokenMintingError("signing secret is empty")

    iat = int(time.time()) if now is None else int(now)

    payload = {
        "context": {
            "user": {
                "avatar": avatar,
                "name": name,
                "email": email,
                "id": user_id,
            },
            "group": None,
        },
        "aud": audience,
        "iss": issuer,
        "sub": subject,
        "room": room,
        "iat": iat,                                  # Issued at - standard claim
        "exp": iat + ROOM_TOKEN_EXPIRE_SECONDS,      # Expiration - standard claim
    }

    try:
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)
    except (TypeError, ValueError, jwt.PyJWTError) as e:
        raise TokenMintingError(str(e)) from e


def access_token_hash(access_token: str, algorithm: str) -> str:
    """Compute the OIDC at_hash of an access token.

    The left half of the hash of the ASCII access token, base64url encoded
    without padding, using the hash that belongs to the ID token's signing
    algorithm (SHA-256 for RS256/ES256/HS256/PS256 and so on).

    Raises:
        NotImplementedError: If the algorithm is unknown or has no hash
    """
    if not algorithm or algorithm.lower() == "none":
        raise NotImplementedError(f"no hash for algorithm {algorithm!r}")

    digest = jwt.get_algorithm_by_name(algorithm).compute_hash_digest(access_token.encode("ascii"))
    half = digest[: len(digest) // 2]
    return base64.urlsafe_b64encode(half).rstrip(b"=").decode("ascii")
