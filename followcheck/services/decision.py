"""
Decides what happens to a submitted screenshot.

decide() is pure: layout verdict + "is the owner's handle on the page" ->
auto-accept or escalate. DecisionOrchestrator wraps it with the recognition
call, the session transition, persistence and notifications.
"""

import asyncio
import logging
from typing import Callable, Protocol, Sequence

from ..models import (
    Action,
    Applicant,
    Decision,
    FollowState,
    PageDimensions,
    RecognitionResult,
    RecognizedWord,
    Step,
    VerificationSession,
)
from .formatting import (
    auto_verified_caption,
    error_caption,
    error_text,
    pending_text,
    review_caption,
    review_keyboard,
    verified_text,
)
from .layout import classify_layout
from .sending import Notifier
from .sessions import SessionStateError, SessionStore

log = logging.getLogger(__name__)

REASON_NOT_FOLLOWING = "Detected 'Follow' button (Not Following)"
REASON_OWNER_MISSING = "Owner username not found"


class Recognizer(Protocol):
    async def recognize(self, image_bytes: bytes) -> RecognitionResult: ...


def handle_in_text(handle: str, text: str | None) -> bool:
    return (handle or "").lstrip("@").lower() in (text or "").lower()


def decide(
    session: VerificationSession,
    words: Sequence[RecognizedWord] | None,
    dimensions: PageDimensions | None,
    full_text: str | None,
    target_handle: str,
) -> Decision:
    if not session.claimed_handle:
        raise SessionStateError("Cannot judge evidence for a session without a handle")

    dims = dimensions or PageDimensions()
    verdict = classify_layout(words, dims.width, dims.height)
    present = handle_in_text(target_handle, full_text)

    if verdict.is_valid and verdict.follow_state == FollowState.FOLLOWING and present:
        return Decision(
            action=Action.AUTO_ACCEPT,
            verdict=verdict,
            reason=verdict.reason,
            follow_state=verdict.follow_state,
            handle_present=True,
        )

    reason = verdict.reason
    if verdict.follow_state == FollowState.NOT_FOLLOWING:
        reason = REASON_NOT_FOLLOWING
    if not present:
        reason += f" | {REASON_OWNER_MISSING}"
    return Decision(
        action=Action.ESCALATE,
        verdict=verdict,
        reason=reason,
        follow_state=verdict.follow_state,
        handle_present=present,
    )


def error_decision(error: str) -> Decision:
    return Decision(action=Action.ERROR_ESCALATE, reason="Recognition error", error=error)


class CheckInProgressError(SessionStateError):
    """A screenshot for this user is already being checked."""


class DecisionOrchestrator:
    def __init__(
        self,
        recognizer: Recognizer,
        sessions: SessionStore,
        notifier: Notifier,
        target_handle: str,
        record_verified_user: Callable[[int, str, str], None],
        recognition_timeout: float = 90.0,
    ):
        self.recognizer = recognizer
        self.sessions = sessions
        self.notifier = notifier
        self.target_handle = target_handle.lstrip("@")
        self.record_verified_user = record_verified_user
        self.recognition_timeout = recognition_timeout

    def decide(self, session, words, dimensions, full_text) -> Decision:
        return decide(session, words, dimensions, full_text, self.target_handle)

    def _check_submission(self, session: VerificationSession) -> None:
        if session.step != Step.SCREENSHOT or not session.claimed_handle:
            raise SessionStateError(f"Not expecting a screenshot in step {session.step.value}")
        if self.sessions.get(session.user_id) is not session:
            raise SessionStateError("Session was restarted or cancelled")
        if self.sessions.is_held(session.user_id):
            raise CheckInProgressError("Still checking the previous screenshot")

    async def process_screenshot(
        self,
        session: VerificationSession,
        applicant: Applicant,
        image_bytes: bytes,
        photo_file_id: str | None = None,
    ) -> Decision:
        # no await between the check and hold(), so a second upload can't slip in
        self._check_submission(session)
        session.attempt_count += 1
        engine_conf = None

        with self.sessions.hold(session.user_id):
            try:
                result = await asyncio.wait_for(
                    self.recognizer.recognize(image_bytes), timeout=self.recognition_timeout
                )
            except asyncio.TimeoutError:
                log.error("OCR timed out for user %s", session.user_id)
                decision = error_decision(f"Recognition timed out after {self.recognition_timeout:.0f}s")
            except Exception as e:
                log.exception("OCR error for user %s", session.user_id)
                decision = error_decision(str(e) or type(e).__name__)
            else:
                engine_conf = result.confidence
                decision = self.decide(session, result.words, result.dimensions, result.text)

            if decision.action == Action.AUTO_ACCEPT:
                try:
                    self.record_verified_user(applicant.user_id, applicant.full_name, session.claimed_handle)
                except Exception as e:
                    log.exception("Could not save verified user %s", applicant.user_id)
                    decision = error_decision(f"Could not save verified user: {e}")

            await self._apply(decision, session, applicant, photo_file_id, engine_conf)

        return decision

    async def escalate_unreadable(
        self,
        session: VerificationSession,
        applicant: Applicant,
        error: str,
        photo_file_id: str | None = None,
    ) -> Decision:
        """Send a screenshot we could not even fetch straight to the operator."""
        self._check_submission(session)
        session.attempt_count += 1
        decision = error_decision(error)
        with self.sessions.hold(session.user_id):
            await self._apply(decision, session, applicant, photo_file_id, None)
        return decision

    async def _apply(self, decision: Decision, session: VerificationSession, applicant: Applicant,
                     photo_file_id: str | None, engine_conf: float | None) -> None:
        uid = session.user_id
        handle = session.claimed_handle
        log.info("User %s (@%s) -> %s (%s)", uid, handle, decision.action.value, decision.error or decision.reason)

        # /start or /cancel during the check replaced this session; the evidence
        # still gets reported, but the newer session is left untouched
        current = self.sessions.get(uid) is session
        if not current:
            log.info("Session of user %s changed during the check", uid)

        if decision.action == Action.AUTO_ACCEPT:
            if current:
                self.sessions.delete(uid)
            await self.notifier.send_to_user(uid, verified_text(handle))
            await self.notifier.send_to_operator_channel(
                auto_verified_caption(applicant, handle, engine_conf, decision)
            )
            return

        if current:
            self.sessions.mark_done(uid)
        if decision.action == Action.ESCALATE:
            await self.notifier.send_to_user(uid, pending_text())
            caption = review_caption(applicant, handle, engine_conf, decision, session.attempt_count)
        else:
            await self.notifier.send_to_user(uid, error_text())
            caption = error_caption(applicant, handle, decision.error)

        await self.notifier.send_to_operator_channel(
            caption, photo=photo_file_id, reply_markup=review_keyboard(uid)
        )
