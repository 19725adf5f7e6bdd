import asyncio
import io
from types import SimpleNamespace

from followcheck.handlers.images import ALREADY_HANDLED_TEXT, STILL_CHECKING_TEXT, on_image
from followcheck.models import Step, VerificationSession
from followcheck.services.decision import DecisionOrchestrator
from followcheck.services.sessions import SessionStore


class FakeMessage:
    def __init__(self, user_id=7, file_id="file-1"):
        self.from_user = SimpleNamespace(id=user_id, first_name="Jane", last_name="Doe", username="jane")
        self.photo = [SimpleNamespace(file_id=file_id)]
        self.document = None
        self.replies = []

    async def reply(self, text, **kwargs):
        self.replies.append(text)


class FakeBot:
    def __init__(self, fail=False):
        self.fail = fail

    async def get_file(self, file_id):
        if self.fail:
            raise ConnectionError("telegram file server unreachable")
        return SimpleNamespace(file_path=f"photos/{file_id}.jpg")

    async def download_file(self, path):
        return io.BytesIO(b"img")


class FakeNotifier:
    def __init__(self):
        self.user_messages = []
        self.operator_messages = []

    async def send_to_user(self, user_id, text, reply_markup=None):
        self.user_messages.append(text)
        return True

    async def send_to_operator_channel(self, text, photo=None, reply_markup=None):
        self.operator_messages.append((text, photo))
        return True


class NeverCalled:
    async def recognize(self, image_bytes):
        raise AssertionError("recognition should not run")


def setup(recognizer=None):
    store = SessionStore()
    store.set(VerificationSession(user_id=7, step=Step.SCREENSHOT, claimed_handle="someone"))
    notifier = FakeNotifier()
    orch = DecisionOrchestrator(
        recognizer=recognizer or NeverCalled(),
        sessions=store,
        notifier=notifier,
        target_handle="BrandOwner",
        record_verified_user=lambda *a: None,
    )
    return store, notifier, orch


def test_failed_download_reaches_operator():
    store, notifier, orch = setup()
    m = FakeMessage()

    asyncio.run(on_image(m, bot=FakeBot(fail=True), sessions=store, orchestrator=orch))

    assert store.get(7).step == Step.DONE
    assert len(notifier.operator_messages) == 1
    text, photo = notifier.operator_messages[0]
    assert "telegram file server unreachable" in text
    assert photo == "file-1"
    assert "Error checking image" in notifier.user_messages[0]


def test_upload_while_checking_gets_told_to_wait():
    store, notifier, orch = setup()
    m = FakeMessage(file_id="file-2")

    async def run():
        with store.hold(7):
            await on_image(m, bot=FakeBot(), sessions=store, orchestrator=orch)

    asyncio.run(run())

    assert m.replies == [STILL_CHECKING_TEXT]
    assert notifier.operator_messages == []


def test_upload_for_settled_session_is_not_rechecked():
    store, notifier, orch = setup()
    stale = store.get(7)
    m = FakeMessage()

    class SettlingBot(FakeBot):
        async def download_file(self, path):
            # another upload finishes while this one downloads
            store.delete(7)
            store.set(stale.model_copy())
            return io.BytesIO(b"img")

    asyncio.run(on_image(m, bot=SettlingBot(), sessions=store, orchestrator=orch))

    assert m.replies[-1] == ALREADY_HANDLED_TEXT
    assert notifier.operator_messages == []
