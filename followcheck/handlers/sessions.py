"""
Verification flow (private chats):
1) any contact / /start   -> ask for X username
2) valid username         -> ask to follow the owner, show "I Have Followed"
3) "I Have Followed" tap  -> ask for the screenshot (handled in images.py)
"""

from aiogram import F, Router, types

from ..config import OWNER_X
from ..models import Step
from ..services.formatting import (
    FOLLOWED_CALLBACK,
    follow_prompt_keyboard,
    handle_saved_text,
    pending_text,
    screenshot_prompt_text,
    welcome_text,
)
from ..services.normalize import HandleValidationError
from ..services.sessions import SessionStateError, SessionStore

router = Router(name="sessions")


@router.callback_query(F.data == FOLLOWED_CALLBACK)
async def on_followed(cb: types.CallbackQuery, sessions: SessionStore):
    try:
        sessions.acknowledge_follow(cb.from_user.id)
    except SessionStateError:
        session = sessions.get(cb.from_user.id)
        if session is not None and session.step == Step.DONE:
            await cb.answer("⏳ Already pending review.")
        else:
            await cb.answer()
            await cb.message.answer("⚠️ Session expired. /start again.")
        return

    await cb.answer()
    await cb.message.answer(screenshot_prompt_text(OWNER_X))


@router.message(F.chat.type == "private", F.text, ~F.text.startswith("/"))
async def on_text(m: types.Message, sessions: SessionStore):
    uid = m.from_user.id
    session = sessions.get(uid)

    if session is None:
        sessions.start(uid)
        await m.reply(welcome_text(OWNER_X))
        return

    if session.step == Step.USERNAME:
        try:
            session = sessions.submit_handle(uid, m.text)
        except HandleValidationError as e:
            await m.reply(str(e))
            return
        await m.reply(
            handle_saved_text(session.claimed_handle, OWNER_X),
            reply_markup=follow_prompt_keyboard(OWNER_X),
        )
    elif session.step == Step.FOLLOW_CHECK:
        await m.reply(
            f"👇 Follow @{OWNER_X}, then tap the button.",
            reply_markup=follow_prompt_keyboard(OWNER_X),
        )
    elif session.step == Step.SCREENSHOT:
        await m.reply("❌ Send a photo.")
    else:
        await m.reply(pending_text())
