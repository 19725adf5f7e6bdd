"""
Operator controls:
- ✅ Verify / ❌ Reject buttons on escalated screenshots
- "yes"/"no" replies to an escalated screenshot in the admin group
- /verify @user, /ban @user, /unban @user, /adminstats, /list_users, /broadcast
"""

import asyncio
import logging
import re

from aiogram import F, Router, types
from aiogram.filters import Command, CommandObject

from .. import db
from ..config import ADMIN_GROUP_ID, ADMIN_ID, BROADCAST_DELAY_SEC, OWNER_X
from ..services.formatting import (
    chunk_blocks,
    parse_review_caption,
    rejected_text,
    verified_text,
)
from ..services.matching import best_match
from ..services.normalize import clean_handle
from ..services.sending import Notifier
from ..services.sessions import SessionStore

router = Router(name="admin")

log = logging.getLogger(__name__)


async def _approve(user_id: int, handle: str, name: str,
                   sessions: SessionStore, notifier: Notifier) -> None:
    db.record_verified_user(user_id, name, handle)
    sessions.delete(user_id)
    await notifier.send_to_user(user_id, verified_text(handle))
    log.info("Admin verified user %s (@%s)", user_id, handle)


async def _reject(user_id: int, sessions: SessionStore, notifier: Notifier) -> None:
    sessions.delete(user_id)
    await notifier.send_to_user(user_id, rejected_text(OWNER_X))
    log.info("Admin rejected user %s", user_id)


# ───────────────────────────── Review buttons ───────────────────────────── #

@router.callback_query(F.data.regexp(r"^(verify|decline)_(\d+)$").as_("match"))
async def on_review_button(cb: types.CallbackQuery, match: re.Match,
                           sessions: SessionStore, notifier: Notifier):
    if cb.from_user.id != ADMIN_ID:
        await cb.answer("⚠️ Admin only")
        return

    action, target = match.group(1), int(match.group(2))
    if action == "decline":
        await _reject(target, sessions, notifier)
        await notifier.edit_operator_message(cb.message, "❌ REJECTED")
        await cb.answer("❌ Rejected")
        return

    session = sessions.get(target)
    _, caption_handle, caption_name = parse_review_caption(cb.message.caption or cb.message.text)
    handle = (session.claimed_handle if session else None) or caption_handle
    if not handle:
        await cb.answer("❌ No handle on record for this user")
        return

    await _approve(target, handle, caption_name or "Verified User", sessions, notifier)
    await notifier.edit_operator_message(cb.message, "✅ VERIFIED")
    await cb.answer("✅ Verified")


@router.message(
    F.chat.id == ADMIN_GROUP_ID,
    F.reply_to_message.caption,
    F.text,
    ~F.text.startswith("/"),
)
async def on_review_reply(m: types.Message, sessions: SessionStore, notifier: Notifier):
    if m.from_user.id != ADMIN_ID:
        return

    reply = m.text.strip().lower()
    if reply not in ("yes", "no"):
        await m.reply("⚠️ Please reply with 'yes' or 'no' only.")
        return

    target, handle, name = parse_review_caption(m.reply_to_message.caption)
    if target is None:
        await m.reply("⚠️ Could not extract user ID from message.")
        return

    if reply == "yes":
        session = sessions.get(target)
        handle = handle or (session.claimed_handle if session else None)
        if not handle:
            await m.reply("⚠️ Could not find the X username for this user.")
            return
        await _approve(target, handle, name or "Verified User", sessions, notifier)
        await notifier.edit_operator_message(m.reply_to_message, "✅ VERIFIED")
        await m.reply(f"✅ Verified user: @{handle} (ID: {target})")
    else:
        await _reject(target, sessions, notifier)
        await notifier.edit_operator_message(m.reply_to_message, "❌ REJECTED")
        await m.reply(f"❌ Rejected user: @{handle or 'unknown'} (ID: {target})")


# ───────────────────────────── Admin commands ───────────────────────────── #

@router.message(Command("verify"), F.from_user.id == ADMIN_ID)
async def verify_cmd(m: types.Message, command: CommandObject,
                     sessions: SessionStore, notifier: Notifier):
    handle = clean_handle(command.args)
    if not handle:
        await m.reply("Usage: /verify @username")
        return

    session = sessions.find_pending_by_handle(handle)
    if session is None:
        pending = sessions.pending_handles()
        idx, score = best_match(handle, pending, threshold=70)
        hint = f"\nDid you mean @{pending[idx]}? (match {score})" if idx is not None else ""
        await m.reply("❌ User not found in pending sessions." + hint)
        return

    await _approve(session.user_id, session.claimed_handle, "Manually Verified", sessions, notifier)
    await m.reply(f"✅ Verified @{session.claimed_handle}")


async def _set_ban(m: types.Message, command: CommandObject, banned: bool):
    handle = clean_handle(command.args)
    verb = "ban" if banned else "unban"
    if not handle:
        await m.reply(f"Usage: /{verb} @username")
        return
    user = db.find_verified_by_handle(handle)
    if not user:
        await m.reply("❌ User not found.")
        return
    db.set_banned(user["tg_user_id"], banned)
    await m.reply(f"🚫 Banned @{user['x_username']}" if banned else f"✅ Unbanned @{user['x_username']}")


@router.message(Command("ban"), F.from_user.id == ADMIN_ID)
async def ban_cmd(m: types.Message, command: CommandObject):
    await _set_ban(m, command, True)


@router.message(Command("unban"), F.from_user.id == ADMIN_ID)
async def unban_cmd(m: types.Message, command: CommandObject):
    await _set_ban(m, command, False)


@router.message(Command("adminstats"), F.from_user.id == ADMIN_ID)
async def adminstats_cmd(m: types.Message, sessions: SessionStore):
    stats = db.get_stats()
    newest = db.list_verified_users(exclude_id=ADMIN_ID)[:5]
    recent = "\n".join(f"  • @{u['x_username']} ({u['created_at']})" for u in newest)
    await m.reply(
        "📊 Admin Stats\n\n"
        f"✅ Verified: {stats['total_users']}\n"
        f"🚫 Banned: {stats['banned']}\n"
        f"🟢 Active Today: {stats['active_today']}\n"
        f"📅 Active Week: {stats['active_week']}\n"
        f"⏳ Open sessions: {len(sessions)}\n\n"
        f"Newest:\n{recent or '  None'}"
    )


@router.message(Command("list_users"), F.from_user.id == ADMIN_ID)
async def list_users_cmd(m: types.Message):
    users = db.list_verified_users(exclude_id=ADMIN_ID)
    if not users:
        await m.reply("❌ No users yet.")
        return

    blocks = [
        f"{i}. @{u['x_username']} (ID: {u['tg_user_id']})\n   ⏰ {u['created_at']}"
        for i, u in enumerate(users, start=1)
    ]
    for chunk in chunk_blocks(f"📋 Users ({len(users)})\n\n", blocks):
        await m.answer(chunk)


@router.message(Command("broadcast"), F.from_user.id == ADMIN_ID)
async def broadcast_cmd(m: types.Message, command: CommandObject, notifier: Notifier):
    message = (command.args or "").strip()
    if not message:
        await m.reply("📢 Broadcast\n\nUsage: /broadcast Your message")
        return

    users = db.list_verified_users(exclude_id=ADMIN_ID)
    await m.reply(f"📤 Sending to {len(users)} users...")

    sent = failed = 0
    for user in users:
        if await notifier.send_to_user(user["tg_user_id"], f"📢 Update from @{OWNER_X}:\n\n{message}"):
            sent += 1
        else:
            failed += 1
        await asyncio.sleep(BROADCAST_DELAY_SEC)

    await m.reply(f"✅ Done!\n\n📨 Sent: {sent}\n❌ Failed: {failed}")
