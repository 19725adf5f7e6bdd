import asyncio

import pytest

from followcheck.models import (
    Action,
    Applicant,
    BoundingBox,
    FollowState,
    PageDimensions,
    RecognitionResult,
    RecognizedWord,
    Step,
    VerificationSession,
)
from followcheck.services.decision import (
    REASON_NOT_FOLLOWING,
    REASON_OWNER_MISSING,
    CheckInProgressError,
    DecisionOrchestrator,
    decide,
)
from followcheck.services.sessions import SessionStateError, SessionStore

W, H = 1000, 2000
OWNER = "BrandOwner"


def word(text, rel_x, rel_y):
    cx, cy = rel_x * W, rel_y * H
    return RecognizedWord(text=text, bbox=BoundingBox(x0=cx - 40, y0=cy - 10, x1=cx + 40, y1=cy + 10))


def profile_words(button="Following"):
    return [
        word("Brand", 0.2, 0.22),
        word("@BrandOwner", 0.2, 0.26),
        word(button, 0.85, 0.35),
        word("Joined", 0.2, 0.50),
        word("Followers", 0.3, 0.60),
    ]


def profile_text(button="Following"):
    return f"Brand\n@BrandOwner\n{button}\nJoined March 2020\n120 Following 45 Followers"


def ready_session(user_id=7, handle="someone", created_at=0.0):
    return VerificationSession(user_id=user_id, step=Step.SCREENSHOT, claimed_handle=handle,
                               created_at=created_at)


# ───────────────────────────── decide() ───────────────────────────── #

def test_following_with_handle_auto_accepts():
    d = decide(ready_session(), profile_words(), PageDimensions(), profile_text(), OWNER)
    assert d.action == Action.AUTO_ACCEPT
    assert d.follow_state == FollowState.FOLLOWING
    assert d.handle_present


def test_handle_check_ignores_case_and_marker():
    d = decide(ready_session(), profile_words(), None, "brandowner following", "@BRANDOWNER")
    assert d.action == Action.AUTO_ACCEPT


def test_follow_button_escalates():
    d = decide(ready_session(), profile_words("Follow"), None, profile_text("Follow"), OWNER)
    assert d.action == Action.ESCALATE
    assert d.reason == REASON_NOT_FOLLOWING
    assert d.follow_state == FollowState.NOT_FOLLOWING


def test_missing_owner_handle_escalates():
    d = decide(ready_session(), profile_words(), None, "Someone Else\nFollowing", OWNER)
    assert d.action == Action.ESCALATE
    assert not d.handle_present
    assert d.reason.endswith(f" | {REASON_OWNER_MISSING}")


def test_empty_page_escalates_with_both_reasons():
    d = decide(ready_session(), [], None, "", OWNER)
    assert d.action == Action.ESCALATE
    assert d.verdict.confidence == 0
    assert REASON_OWNER_MISSING in d.reason


def test_invalid_layout_escalates_even_when_following():
    words = [word("Brand", 0.2, 0.5), word("@BrandOwner", 0.2, 0.21), word("Following", 0.85, 0.35)]
    d = decide(ready_session(), words, None, profile_text(), OWNER)
    assert d.action == Action.ESCALATE
    assert not d.verdict.is_valid


def test_decide_requires_handle():
    with pytest.raises(SessionStateError):
        decide(VerificationSession(user_id=1), profile_words(), None, profile_text(), OWNER)


# ───────────────────────────── Orchestrator ───────────────────────────── #

class FakeRecognizer:
    def __init__(self, result=None, exc=None, delay=0.0):
        self.result = result
        self.exc = exc
        self.delay = delay
        self.calls = 0

    async def recognize(self, image_bytes):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc:
            raise self.exc
        return self.result


class FakeNotifier:
    def __init__(self):
        self.user_messages = []
        self.operator_messages = []

    async def send_to_user(self, user_id, text, reply_markup=None):
        self.user_messages.append((user_id, text))
        return True

    async def send_to_operator_channel(self, text, photo=None, reply_markup=None):
        self.operator_messages.append({"text": text, "photo": photo, "reply_markup": reply_markup})
        return True


def orchestrator(recognizer, store=None, record=None, timeout=5.0):
    if store is None:
        store = SessionStore()
    notifier = FakeNotifier()
    saved = []

    def default_record(uid, name, handle):
        saved.append((uid, name, handle))

    orch = DecisionOrchestrator(
        recognizer=recognizer,
        sessions=store,
        notifier=notifier,
        target_handle="@" + OWNER,
        record_verified_user=record or default_record,
        recognition_timeout=timeout,
    )
    return orch, store, notifier, saved


def submit(orch, session, photo="file-1"):
    applicant = Applicant(user_id=session.user_id, full_name="Jane Doe", tg_username="jane")
    return asyncio.run(orch.process_screenshot(session, applicant, b"img", photo_file_id=photo))


def put(store, session):
    store.set(session)
    return session


def good_result(button="Following"):
    return RecognitionResult(words=profile_words(button), text=profile_text(button),
                             confidence=91.4, engine="test")


def test_auto_accept_saves_and_closes_session():
    orch, store, notifier, saved = orchestrator(FakeRecognizer(good_result()))
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.AUTO_ACCEPT
    assert saved == [(7, "Jane Doe", "someone")]
    assert store.get(7) is None
    assert notifier.user_messages[0][0] == 7
    assert "Verified" in notifier.user_messages[0][1]
    # operator only gets a text notice
    assert len(notifier.operator_messages) == 1
    assert notifier.operator_messages[0]["photo"] is None
    assert "Auto-Verified" in notifier.operator_messages[0]["text"]


def test_not_following_goes_to_review():
    orch, store, notifier, saved = orchestrator(FakeRecognizer(good_result("Follow")))
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.ESCALATE
    assert saved == []
    assert store.get(7).step == Step.DONE
    assert "Pending" in notifier.user_messages[0][1]
    op = notifier.operator_messages[0]
    assert op["photo"] == "file-1"
    assert "🆔 7" in op["text"]
    assert REASON_NOT_FOLLOWING in op["text"]
    buttons = op["reply_markup"].inline_keyboard[0]
    assert [b.callback_data for b in buttons] == ["verify_7", "decline_7"]


def test_engine_failure_escalates_with_error():
    orch, store, notifier, saved = orchestrator(FakeRecognizer(exc=RuntimeError("engine exploded")))
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.ERROR_ESCALATE
    assert d.error == "engine exploded"
    assert store.get(7).step == Step.DONE
    assert "Error checking image" in notifier.user_messages[0][1]
    assert "engine exploded" in notifier.operator_messages[0]["text"]
    assert notifier.operator_messages[0]["reply_markup"] is not None


def test_slow_engine_times_out():
    orch, store, notifier, _ = orchestrator(FakeRecognizer(good_result(), delay=1.0), timeout=0.01)
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.ERROR_ESCALATE
    assert "timed out" in d.error
    assert store.get(7).step == Step.DONE


def test_save_failure_becomes_error_escalation():
    def broken(uid, name, handle):
        raise OSError("disk full")

    orch, store, notifier, _ = orchestrator(FakeRecognizer(good_result()), record=broken)
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.ERROR_ESCALATE
    assert "disk full" in d.error
    assert store.get(7).step == Step.DONE


def test_screenshot_rejected_outside_screenshot_step():
    orch, store, _, _ = orchestrator(FakeRecognizer(good_result()))
    s = put(store, VerificationSession(user_id=7, step=Step.FOLLOW_CHECK, claimed_handle="someone"))
    with pytest.raises(SessionStateError):
        submit(orch, s)
    assert orch.recognizer.calls == 0


def test_attempts_are_counted():
    orch, store, notifier, _ = orchestrator(FakeRecognizer(good_result("Follow")))
    s = put(store, ready_session())
    submit(orch, s)
    assert s.attempt_count == 1
    assert "🔁 Attempt: 1" in notifier.operator_messages[0]["text"]


def test_session_survives_sweep_while_recognizing():
    clock = [0.0]
    store = SessionStore(timeout=1, clock=lambda: clock[0])

    class SweepingRecognizer:
        calls = 0

        async def recognize(self, image_bytes):
            clock[0] = 100.0
            assert store.sweep_expired() == []
            return good_result("Follow")

    orch, _, _, _ = orchestrator(SweepingRecognizer(), store=store)
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.ESCALATE
    assert store.get(7).step == Step.DONE


class RestartingRecognizer:
    """Simulates the user sending /start while their screenshot is being read."""

    def __init__(self, store, result):
        self.store = store
        self.result = result

    async def recognize(self, image_bytes):
        self.store.start(7)
        return self.result


def test_restart_during_check_still_reports_evidence():
    store = SessionStore()
    orch, _, notifier, _ = orchestrator(RestartingRecognizer(store, good_result("Follow")), store=store)
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.ESCALATE
    assert len(notifier.operator_messages) == 1
    assert "🐦 X: @someone" in notifier.operator_messages[0]["text"]
    assert "Pending" in notifier.user_messages[0][1]
    # the fresh session is left alone
    assert store.get(7).step == Step.USERNAME
    assert store.get(7).claimed_handle is None


def test_restart_during_auto_accept_keeps_new_session():
    store = SessionStore()
    orch, _, notifier, saved = orchestrator(RestartingRecognizer(store, good_result()), store=store)
    s = put(store, ready_session())

    d = submit(orch, s)

    assert d.action == Action.AUTO_ACCEPT
    assert saved == [(7, "Jane Doe", "someone")]
    assert store.get(7) is not None
    assert store.get(7).step == Step.USERNAME
    assert "Verified" in notifier.user_messages[0][1]


def test_second_upload_during_check_is_refused():
    orch, store, notifier, _ = orchestrator(FakeRecognizer(good_result("Follow"), delay=0.05))
    s = put(store, ready_session())
    applicant = Applicant(user_id=7, full_name="Jane Doe")

    async def run():
        return await asyncio.gather(
            orch.process_screenshot(s, applicant, b"one", photo_file_id="file-1"),
            orch.process_screenshot(s, applicant, b"two", photo_file_id="file-2"),
            return_exceptions=True,
        )

    first, second = asyncio.run(run())

    assert first.action == Action.ESCALATE
    assert isinstance(second, CheckInProgressError)
    assert orch.recognizer.calls == 1
    assert s.attempt_count == 1
    assert len(notifier.operator_messages) == 1
    assert notifier.operator_messages[0]["photo"] == "file-1"


def test_upload_after_auto_accept_is_refused():
    orch, store, notifier, saved = orchestrator(FakeRecognizer(good_result()))
    s = put(store, ready_session())
    submit(orch, s)

    with pytest.raises(SessionStateError):
        submit(orch, s)
    assert len(saved) == 1
    assert len(notifier.user_messages) == 1


def test_unreadable_upload_goes_to_operator():
    orch, store, notifier, _ = orchestrator(FakeRecognizer(good_result()))
    s = put(store, ready_session())
    applicant = Applicant(user_id=7, full_name="Jane Doe")

    d = asyncio.run(orch.escalate_unreadable(s, applicant, "Could not download image: timeout",
                                             photo_file_id="file-1"))

    assert d.action == Action.ERROR_ESCALATE
    assert orch.recognizer.calls == 0
    assert s.attempt_count == 1
    assert store.get(7).step == Step.DONE
    assert not store.is_held(7)
    assert "Error checking image" in notifier.user_messages[0][1]
    op = notifier.operator_messages[0]
    assert op["photo"] == "file-1"
    assert "Could not download image" in op["text"]
