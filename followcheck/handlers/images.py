"""
Step 3: receive the profile screenshot, hand it to the orchestrator.
"""

import logging
from aiogram import F, Router, types

from ..config import OWNER_X
from ..models import Applicant, Step
from ..services.decision import CheckInProgressError, DecisionOrchestrator
from ..services.formatting import full_name, pending_text, welcome_text
from ..services.sessions import SessionStateError, SessionStore

router = Router(name="images")
router.message.filter(F.chat.type == "private")

log = logging.getLogger(__name__)

STILL_CHECKING_TEXT = "⏳ Still checking your last screenshot. Hang on."
ALREADY_HANDLED_TEXT = "⏳ Your screenshot was already handled. Check /status."


async def download_image(bot, file_id: str) -> bytes:
    fobj = await bot.get_file(file_id)
    b = await bot.download_file(fobj.file_path)
    return b.read() if hasattr(b, "read") else b.getvalue()


def _image_file_id(m: types.Message) -> str | None:
    if m.photo:
        return m.photo[-1].file_id
    if m.document and m.document.mime_type and m.document.mime_type.startswith("image/"):
        return m.document.file_id
    return None


@router.message(F.photo | F.document)
async def on_image(m: types.Message, bot, sessions: SessionStore,
                   orchestrator: DecisionOrchestrator) -> None:
    """
    Accepts photos (compressed) or image documents (original).
    Only the screenshot step takes images; other steps get a nudge.
    """
    uid = m.from_user.id
    session = sessions.get(uid)

    if session is None:
        sessions.start(uid)
        await m.reply(welcome_text(OWNER_X))
        return
    if session.step == Step.USERNAME:
        await m.reply("❌ Send your X username as text first.")
        return
    if session.step == Step.FOLLOW_CHECK:
        await m.reply("👆 Tap \"I Have Followed\" first, then send the screenshot.")
        return
    if session.step == Step.DONE:
        await m.reply(pending_text())
        return

    file_id = _image_file_id(m)
    if not file_id:
        await m.reply("Please send an image (photo or image document).")
        return

    if sessions.is_held(uid):
        await m.reply(STILL_CHECKING_TEXT)
        return

    await m.reply("🔍 Checking... one sec.")

    applicant = Applicant(
        user_id=uid,
        full_name=full_name(m.from_user.first_name, m.from_user.last_name),
        tg_username=m.from_user.username,
    )

    try:
        image_bytes = await download_image(bot, file_id)
    except Exception as e:
        log.exception("Could not download screenshot from user %s", uid)
        submit = orchestrator.escalate_unreadable(
            session, applicant, f"Could not download image: {e}", photo_file_id=file_id
        )
    else:
        log.debug("Got %d bytes of screenshot from user %s", len(image_bytes), uid)
        submit = orchestrator.process_screenshot(session, applicant, image_bytes, photo_file_id=file_id)

    try:
        await submit
    except CheckInProgressError:
        await m.reply(STILL_CHECKING_TEXT)
    except SessionStateError:
        # an earlier upload already settled (or /cancel dropped) this session
        await m.reply(ALREADY_HANDLED_TEXT)
