"""
Message text and inline keyboards.

Parse mode is disabled globally, so everything here is plain text.
Operator captions carry "🆔 <id>" and "🐦 X: @<handle>" lines; admins reply
"yes"/"no" to them and parse_review_caption() reads them back.
"""

import re
from datetime import datetime

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from ..models import Applicant, Decision

FOLLOWED_CALLBACK = "i_have_followed"
TELEGRAM_TEXT_LIMIT = 4000
# photo captions are capped at 1024 chars
MAX_ERROR_LEN = 300

_ID_RE = re.compile(r"🆔 (\d+)")
_HANDLE_RE = re.compile(r"🐦 X: @?([A-Za-z0-9_]+)")
_NAME_RE = re.compile(r"^👤 (.+)$", re.M)


def profile_url(handle: str) -> str:
    return f"https://x.com/{(handle or '').lstrip('@')}"


def full_name(first: str | None, last: str | None) -> str:
    return " ".join(p for p in ((first or "").strip(), (last or "").strip()) if p)


def format_confidence(conf: float | None) -> str:
    if conf is None:
        return "n/a"
    return f"{round(conf)}%"


def _stamp(when: datetime | None) -> str:
    return (when or datetime.now()).strftime("%d/%m/%Y %H:%M")


# ───────────────────────────── User-facing ───────────────────────────── #

def welcome_text(owner: str) -> str:
    return (
        "👋 Welcome to X Growth!\n\n"
        "Get verified, get followers. Simple.\n\n"
        "📝 Steps:\n"
        f"1️⃣ Follow @{owner}\n"
        "2️⃣ Send your X username\n"
        "3️⃣ Send proof (screenshot)\n"
        "4️⃣ Wait for approval\n\n"
        "Ready? Send your X username (e.g. @yourhandle)"
    )


def handle_saved_text(handle: str, owner: str) -> str:
    return (
        f"✅ Saved: @{handle}\n\n"
        f"Follow @{owner} to join.\n\n"
        "👇 Tap when done."
    )


def follow_prompt_keyboard(owner: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text=f"Follow @{owner}", url=profile_url(owner))],
        [InlineKeyboardButton(text="✅ I Have Followed", callback_data=FOLLOWED_CALLBACK)],
    ])


def screenshot_prompt_text(owner: str) -> str:
    return (
        "📸 Bet. Send the screenshot.\n\n"
        f"Open @{owner} on X and screenshot the profile page.\n"
        'Make sure the "Following" button, the name and the join date are visible.'
    )


def verified_text(handle: str, when: datetime | None = None) -> str:
    return (
        "✅ Verified!\n\n"
        f"🐦 @{handle}\n"
        f"⏰ {_stamp(when)}\n\n"
        "🎉 You're in!"
    )


def pending_text() -> str:
    return "⏳ Verification Pending\n\nAdmin is reviewing your screenshot.\nSit tight!"


def error_text() -> str:
    return "⚠️ Error checking image. Admin will review manually."


def rejected_text(owner: str) -> str:
    return (
        "❌ Verification Rejected\n\n"
        "Didn't pass check.\n\n"
        "Why?\n"
        '• Screenshot didn\'t show "Following"\n'
        "• Username mismatch\n"
        "• Blurry/Edited\n"
        f"• You didn't follow @{owner}\n\n"
        "Type /start to try again."
    )


def rules_text(owner: str) -> str:
    return (
        "📘 Rules\n\n"
        f"1. Follow @{owner}\n"
        "2. Send a real, unedited screenshot\n"
        "3. Don't unfollow after verifying\n"
        "4. Be honest\n\n"
        "Break rules = Ban 💀"
    )


def status_text(row) -> str:
    return (
        "✅ Status: VERIFIED\n\n"
        f"👤 Telegram: {row['telegram_name'] or '—'}\n"
        f"🐦 X: @{row['x_username']}\n"
        f"⏰ Since: {row['created_at'] or '—'}\n"
        f"🔗 Link: {profile_url(row['x_username'])}"
    )


# ───────────────────────────── Operator-facing ───────────────────────────── #

def _applicant_lines(applicant: Applicant, handle: str) -> list[str]:
    return [
        f"👤 {applicant.full_name or 'Unknown'}",
        f"💬 TG: @{applicant.tg_username or 'none'}",
        f"🆔 {applicant.user_id}",
        f"🐦 X: @{handle}",
    ]


def auto_verified_caption(applicant: Applicant, handle: str, engine_confidence: float | None,
                          decision: Decision) -> str:
    layout_conf = decision.verdict.confidence if decision.verdict else 0
    return "\n".join([
        "🤖 Auto-Verified User",
        *_applicant_lines(applicant, handle),
        f"📊 OCR confidence: {format_confidence(engine_confidence)}",
        f"📐 Layout confidence: {layout_conf}%",
        "✅ Layout Valid & Following",
    ])


def review_caption(applicant: Applicant, handle: str, engine_confidence: float | None,
                   decision: Decision, attempt: int = 1) -> str:
    layout_conf = decision.verdict.confidence if decision.verdict else 0
    return "\n".join([
        "⚠️ Manual Review Needed",
        "",
        *_applicant_lines(applicant, handle),
        f"📊 OCR confidence: {format_confidence(engine_confidence)}",
        f"📐 Layout confidence: {layout_conf}%",
        f"❓ Reason: {decision.reason}",
        f"🔍 Follow State: {decision.follow_state.value}",
        f"🔁 Attempt: {attempt}",
        "",
        "Verify this user? (buttons, or reply yes/no)",
    ])


def error_caption(applicant: Applicant, handle: str, error: str | None) -> str:
    err = (error or "unknown")[:MAX_ERROR_LEN]
    return "\n".join([
        "🚨 OCR Error - Manual Review",
        *_applicant_lines(applicant, handle),
        f"Error: {err}",
    ])


def review_keyboard(user_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="✅ Verify", callback_data=f"verify_{user_id}"),
            InlineKeyboardButton(text="❌ Reject", callback_data=f"decline_{user_id}"),
        ]
    ])


def parse_review_caption(caption: str | None) -> tuple[int | None, str | None, str | None]:
    """
    Read (user_id, handle, name) back out of an operator caption.
    """
    text = caption or ""
    m_id = _ID_RE.search(text)
    m_handle = _HANDLE_RE.search(text)
    m_name = _NAME_RE.search(text)
    return (
        int(m_id.group(1)) if m_id else None,
        m_handle.group(1) if m_handle else None,
        m_name.group(1).strip() if m_name else None,
    )


def chunk_blocks(header: str, blocks: list[str], limit: int = TELEGRAM_TEXT_LIMIT) -> list[str]:
    """
    Pack text blocks into messages that stay under Telegram's size limit.
    """
    chunks: list[str] = []
    current = header
    for block in blocks:
        piece = block + "\n\n"
        if current and len(current) + len(piece) > limit:
            chunks.append(current.rstrip())
            current = ""
        current += piece
    if current.strip():
        chunks.append(current.rstrip())
    return chunks
