"""
Per-user verification sessions.

Flow:
1) username      -> user sends their X handle
2) follow_check  -> user taps "I Have Followed"
3) screenshot    -> user sends profile screenshot, orchestrator decides
4) done          -> waiting on an admin (auto-accepted sessions are deleted)
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from ..models import Step, VerificationSession
from .normalize import validate_handle

log = logging.getLogger(__name__)

SESSION_TIMEOUT_SEC = 10 * 60
SWEEP_INTERVAL_SEC = 5 * 60


class SessionStateError(RuntimeError):
    """The session is missing or in a step that can't take this input."""


class SessionStore:
    """
    In-memory map of user id -> VerificationSession.

    Updates for one user arrive in order, so no per-user locking. The sweep
    works on a snapshot and never removes a session that is held by an
    in-flight screenshot check.
    """

    def __init__(
        self,
        timeout: float = SESSION_TIMEOUT_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self._clock = clock
        self._sessions: dict[int, VerificationSession] = {}
        self._held: set[int] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._sessions

    # ---- plain map access ----

    def get(self, user_id: int) -> VerificationSession | None:
        return self._sessions.get(user_id)

    def set(self, session: VerificationSession) -> None:
        if session.step in (Step.SCREENSHOT, Step.DONE) and not session.claimed_handle:
            raise SessionStateError(f"Session in step {session.step.value} needs a handle")
        self._sessions[session.user_id] = session

    def delete(self, user_id: int) -> VerificationSession | None:
        return self._sessions.pop(user_id, None)

    # ---- transitions ----

    def start(self, user_id: int) -> VerificationSession:
        """Create (or reset) the session at the username step."""
        session = VerificationSession(user_id=user_id, created_at=self._clock())
        self._sessions[user_id] = session
        return session

    def submit_handle(self, user_id: int, text: str | None) -> VerificationSession:
        session = self._require(user_id)
        if session.step != Step.USERNAME:
            raise SessionStateError(f"Not expecting a username in step {session.step.value}")
        # raises HandleValidationError and leaves the session untouched
        handle = validate_handle(text)
        session.claimed_handle = handle
        session.step = Step.FOLLOW_CHECK
        return session

    def acknowledge_follow(self, user_id: int) -> VerificationSession:
        session = self._require(user_id)
        if not session.claimed_handle:
            raise SessionStateError("No handle on file yet")
        if session.step == Step.DONE:
            raise SessionStateError("Already waiting for review")
        session.step = Step.SCREENSHOT
        return session

    def mark_done(self, user_id: int) -> VerificationSession | None:
        """Park the session for admin review. Returns None if it was cancelled meanwhile."""
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if not session.claimed_handle:
            raise SessionStateError("Cannot park a session without a handle")
        session.step = Step.DONE
        return session

    def find_pending_by_handle(self, handle: str) -> VerificationSession | None:
        h = (handle or "").lstrip("@").lower()
        for session in self._sessions.values():
            if session.claimed_handle and session.claimed_handle.lower() == h:
                return session
        return None

    def pending_handles(self) -> list[str]:
        return [s.claimed_handle for s in self._sessions.values() if s.claimed_handle]

    def _require(self, user_id: int) -> VerificationSession:
        session = self._sessions.get(user_id)
        if session is None:
            raise SessionStateError("Session expired")
        return session

    # ---- expiry ----

    def is_held(self, user_id: int) -> bool:
        return user_id in self._held

    @contextmanager
    def hold(self, user_id: int) -> Iterator[None]:
        """Keep the sweep away from this user's session for the duration."""
        self._held.add(user_id)
        try:
            yield
        finally:
            self._held.discard(user_id)

    def sweep_expired(self, now: float | None = None) -> list[int]:
        now = self._clock() if now is None else now
        removed = []
        for user_id, session in list(self._sessions.items()):
            if user_id in self._held:
                continue
            if now - session.created_at <= self.timeout:
                continue
            # re-check identity: the user may have restarted since the snapshot
            if self._sessions.get(user_id) is session:
                del self._sessions[user_id]
                removed.append(user_id)
        return removed

    async def run_sweeper(self, interval: float = SWEEP_INTERVAL_SEC) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = self.sweep_expired()
            if removed:
                log.info("Swept %d idle session(s)", len(removed))
