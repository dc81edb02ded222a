"""Server-side checkout session storage.

The session cookie only carries an opaque session id; checkout state
lives here. Writes are compare-and-swap on the session version so two
concurrent requests for the same session cannot both advance a step.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from storefront.domain.entities import CheckoutSession
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


@dataclass
class _Entry:
    session: CheckoutSession
    expires_at: datetime


class InMemorySessionStore:
    """In-memory session store with expiry.

    Used as a simple implementation for a single process. Every read
    returns a detached copy; callers write back with compare_and_swap.
    """

    def __init__(self, max_age_seconds: int | None = None) -> None:
        """Initialize session store.

        Args:
            max_age_seconds: Lifetime of an idle session.
        """
        self.max_age = timedelta(
            seconds=max_age_seconds if max_age_seconds is not None else settings.session_max_age_seconds
        )
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _live_entry(self, session_id: str) -> _Entry | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if entry.expires_at <= self._now():
            del self._entries[session_id]
            logger.debug("Session expired", session_id=session_id)
            return None
        return entry

    def _put(self, session: CheckoutSession) -> CheckoutSession:
        now = self._now()
        stored = session.copy(version=session.version + 1, updated_at=now)
        self._entries[session.session_id] = _Entry(
            session=stored,
            expires_at=now + self.max_age,
        )
        return stored.copy()

    async def get(self, session_id: str) -> CheckoutSession | None:
        """Get a session by id.

        Args:
            session_id: Session identifier.

        Returns:
            Detached copy of the session, or None if unknown or expired.
        """
        async with self._lock:
            entry = self._live_entry(session_id)
            return entry.session.copy() if entry else None

    async def get_or_create(self, session_id: str) -> CheckoutSession:
        """Get a session, creating an empty one if needed."""
        async with self._lock:
            entry = self._live_entry(session_id)
            if entry is not None:
                return entry.session.copy()
            return self._put(CheckoutSession(session_id=session_id))

    async def save(self, session: CheckoutSession) -> CheckoutSession:
        """Store a session unconditionally.

        Returns:
            The stored copy with its new version.
        """
        async with self._lock:
            return self._put(session)

    async def compare_and_swap(
        self,
        updated: CheckoutSession,
        expected_version: int,
    ) -> CheckoutSession | None:
        """Store ``updated`` only if the stored version is unchanged.

        Args:
            updated: New session state.
            expected_version: Version the caller read before deciding.

        Returns:
            The stored copy, or None if another write happened first.
        """
        async with self._lock:
            entry = self._live_entry(updated.session_id)
            current_version = entry.session.version if entry else 0
            if current_version != expected_version:
                logger.info(
                    "Session write rejected",
                    session_id=updated.session_id,
                    expected_version=expected_version,
                    current_version=current_version,
                )
                return None
            return self._put(updated.copy(version=current_version))

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._entries.pop(session_id, None)

    async def count(self) -> int:
        async with self._lock:
            return len(self._entries)


# Global store instance
_session_store: InMemorySessionStore | None = None


def get_session_store() -> InMemorySessionStore:
    """Get the session store singleton.

    Returns:
        InMemorySessionStore instance.
    """
    global _session_store
    if _session_store is None:
        _session_store = InMemorySessionStore()
    return _session_store
