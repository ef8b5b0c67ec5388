"""In-memory store for pending room authorizations.

Each login attempt started by /room/{name} leaves one PendingAttempt here,
keyed by the opaque id carried in the SESSION cookie. The callback consumes
it exactly once. Nothing survives a restart.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# Matches the SESSION cookie lifetime
PENDING_TTL_SECONDS = 30 * 60
REAPER_INTERVAL_SECONDS = 60

SESSION_ID_BYTES = 32


@dataclass(frozen=True)
class PendingAttempt:
    """Secrets for one authorization flow in progress."""

    id: str
    room: str
    csrf_token: str
    nonce: str
    pkce_verifier: str = field(repr=False)
    created_at: float = field(default_factory=time.monotonic)


class PendingAuthStore:
    """Pending attempts keyed by session id.

    Only create() and consume() are exposed to request handlers. Every
    access to the map goes through a single lock, so two callbacks racing
    on the same id can never both get the record.
    """

    def __init__(self, ttl: float = PENDING_TTL_SECONDS, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._attempts: dict[str, PendingAttempt] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._attempts)

    async def create(
        self,
        room: str,
        csrf_token: str,
        nonce: str,
        pkce_verifier: str,
    ) -> tuple[str, PendingAttempt]:
        """Store a new attempt under a fresh unguessable id."""
        async with self._lock:
            session_id = secrets.token_urlsafe(SESSION_ID_BYTES)
            while session_id in self._attempts:
                session_id = secrets.token_urlsafe(SESSION_ID_BYTES)

            attempt = PendingAttempt(
                id=session_id,
                room=room,
                csrf_token=csrf_token,
                nonce=nonce,
                pkce_verifier=pkce_verifier,
                created_at=self._clock(),
            )
            self._attempts[session_id] = attempt
            return session_id, attempt

    async def consume(self, session_id: str) -> Optional[PendingAttempt]:
        """Remove and return the attempt, or None if unknown or expired."""
        async with self._lock:
            attempt = self._attempts.pop(session_id, None)

        if attempt is None:
            return None
        if self._expired(attempt, self._clock()):
            logger.info("[STORE] Pending attempt expired before callback")
            return None
        return attempt

    async def reap(self) -> int:
        """Drop every attempt older than the TTL. Returns how many went."""
        now = self._clock()
        async with self._lock:
            stale = [key for key, attempt in self._attempts.items() if self._expired(attempt, now)]
            for key in stale:
                del self._attempts[key]

        if stale:
            logger.info(f"[STORE] Reaped {len(stale)} abandoned attempt(s), {len(self._attempts)} pending")
        return len(stale)

    async def run_reaper(self, interval: float = REAPER_INTERVAL_SECONDS) -> None:
        """Reap periodically until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.reap()

    def _expired(self, attempt: PendingAttempt, now: float) -> bool:
        return now - attempt.created_at >= self.ttl


def is_session_id(value: Optional[str]) -> bool:
    """Check that a cookie value looks like an id this store hands out."""
    if not value:
        return False
    # token_urlsafe(32) is 43 chars of the urlsafe base64 alphabet
    if len(value) != 43:
        return False
    return all(c.isascii() and (c.isalnum() or c in "-_") for c in value)
