"""
User commands:
/start, /help, /cancel, /status, /rules, /leave
"""

from aiogram import F, Router, types
from aiogram.filters import Command, CommandStart

from .. import db
from ..config import ADMIN_ID, OWNER_X
from ..services.formatting import rules_text, status_text, welcome_text
from ..services.sessions import SessionStore

router = Router(name="commands")
router.message.filter(F.chat.type == "private")


@router.message(CommandStart())
async def start_cmd(m: types.Message, sessions: SessionStore):
    uid = m.from_user.id

    if uid == ADMIN_ID:
        await m.reply("👑 Welcome Boss!\n\nYou are the admin. Type /help for admin commands.")
        return

    user = db.get_user(uid)
    if user and user["is_banned"]:
        await m.reply("🚫 You are banned from this network.")
        return
    if user and user["verified"]:
        await m.reply(
            "✅ Already verified!\n\n"
            f"🐦 @{user['x_username']}\n"
            f"⏰ Since: {user['created_at']}\n\n"
            "Type /status any time."
        )
        return

    sessions.start(uid)
    await m.reply(welcome_text(OWNER_X))


@router.message(Command("help"))
async def help_cmd(m: types.Message):
    text = (
        "🆘 Help\n\n"
        "/start - Join/Restart verification\n"
        "/status - Check status\n"
        "/rules - Read rules\n"
        "/leave - Leave network\n"
        "/cancel - Cancel verification\n"
        "/help - This message\n"
    )
    if m.from_user.id == ADMIN_ID:
        text += (
            "\nAdmin:\n"
            "/verify @user - Verify a pending user\n"
            "/ban @user, /unban @user\n"
            "/adminstats - Stats\n"
            "/list_users - List verified users\n"
            "/broadcast <text> - Message everyone\n"
            "Reply yes/no to a review message to decide it.\n"
        )
    text += f"\nSupport? DM @{OWNER_X}"
    await m.reply(text)


@router.message(Command("cancel"))
async def cancel_cmd(m: types.Message, sessions: SessionStore):
    sessions.delete(m.from_user.id)
    await m.reply("🔄 Cancelled. Type /start to restart.")


@router.message(Command("status"))
async def status_cmd(m: types.Message, sessions: SessionStore):
    uid = m.from_user.id
    user = db.get_user(uid)
    if user and user["verified"]:
        db.touch_user(uid)
        await m.reply(status_text(user))
        return

    session = sessions.get(uid)
    if session is None:
        await m.reply("❌ Not verified yet.\n\nType /start to join.")
    else:
        await m.reply(f"⏳ Verification in progress (step: {session.step.value}).")


@router.message(Command("rules"))
async def rules_cmd(m: types.Message):
    await m.reply(rules_text(OWNER_X))


@router.message(Command("leave"))
async def leave_cmd(m: types.Message, sessions: SessionStore):
    sessions.delete(m.from_user.id)
    if db.remove_user(m.from_user.id):
        await m.reply("👋 You left. Type /start to come back.")
    else:
        await m.reply("You're not in the network. Type /start to join.")
