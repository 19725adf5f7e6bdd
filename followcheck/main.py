"""
Application entrypoint: wires together dispatcher, routers, middleware and
the long-lived services (session store, OCR engine, orchestrator), and
registers Telegram slash commands so typing "/" shows the menu.
"""

import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.types import BotCommand
# NOTE: We intentionally do NOT import ParseMode; we disable parse mode globally.

from . import db
from .config import (
    ADMIN_GROUP_ID,
    ADMIN_ID,
    OCR_MODE,
    OPENAI_API_KEY,
    OPENAI_MAX_RPM,
    OPENAI_MAX_TPM,
    OPENAI_MODEL,
    OPENAI_TOKENS_PER_IMAGE,
    OWNER_X,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SEC,
    RECOGNITION_TIMEOUT_SEC,
    SESSION_SWEEP_INTERVAL_SEC,
    SESSION_TIMEOUT_SEC,
    TELEGRAM_BOT_TOKEN,
    TESSERACT_CMD,
)
from .handlers import admin, commands, images, sessions
from .middleware.errors import ErrorMiddleware
from .middleware.logging import setup_logging
from .middleware.ratelimit import RateLimiter, RateLimitMiddleware
from .services.decision import DecisionOrchestrator
from .services.recognition import RecognitionEngine
from .services.sending import Notifier
from .services.sessions import SessionStore

log = logging.getLogger(__name__)


async def setup_bot_commands(bot: Bot) -> None:
    """Register the bot's slash commands so they appear when you type "/"."""
    cmds = [
        BotCommand(command="start",  description="Start verification"),
        BotCommand(command="help",   description="How to use the bot"),
        BotCommand(command="status", description="Check your status"),
        BotCommand(command="rules",  description="Read the rules"),
        BotCommand(command="cancel", description="Cancel verification"),
        BotCommand(command="leave",  description="Leave the network"),
    ]
    await bot.set_my_commands(cmds)


def _check_settings() -> None:
    missing = [
        name for name, value in (
            ("TELEGRAM_BOT_TOKEN", TELEGRAM_BOT_TOKEN),
            ("ADMIN_ID", ADMIN_ID),
            ("ADMIN_GROUP_ID", ADMIN_GROUP_ID),
            ("OWNER_X", OWNER_X),
        ) if not value
    ]
    if missing:
        raise SystemExit(f"Missing required settings: {', '.join(missing)}")


async def main() -> None:
    # Fail fast if the bot isn't configured
    _check_settings()

    # Init logging and DB
    setup_logging()
    db.init_db()

    # Create bot (disable parse mode so "<...>" text won't break)
    bot = Bot(
        token=TELEGRAM_BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=None)
    )

    store = SessionStore(timeout=SESSION_TIMEOUT_SEC)
    engine = RecognitionEngine(
        mode=OCR_MODE,
        tesseract_cmd=TESSERACT_CMD,
        openai_api_key=OPENAI_API_KEY,
        openai_model=OPENAI_MODEL,
        openai_limits={
            "max_rpm": OPENAI_MAX_RPM,
            "max_tpm": OPENAI_MAX_TPM,
            "tokens_per_image": OPENAI_TOKENS_PER_IMAGE,
        },
    )
    notifier = Notifier(bot, operator_chat_id=ADMIN_GROUP_ID)
    orchestrator = DecisionOrchestrator(
        recognizer=engine,
        sessions=store,
        notifier=notifier,
        target_handle=OWNER_X,
        record_verified_user=db.record_verified_user,
        recognition_timeout=RECOGNITION_TIMEOUT_SEC,
    )

    # Everything below is injected into handlers by parameter name
    dp = Dispatcher(sessions=store, orchestrator=orchestrator, notifier=notifier)

    # Errors outermost, then throttling
    limiter = RateLimiter(RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SEC)
    for observer in (dp.message, dp.callback_query):
        observer.middleware(ErrorMiddleware())
        observer.middleware(RateLimitMiddleware(limiter, exempt=[ADMIN_ID]))

    # Attach feature routers (the free-text session router goes last)
    dp.include_router(commands.router)
    dp.include_router(admin.router)
    dp.include_router(images.router)
    dp.include_router(sessions.router)

    sweeper: asyncio.Task | None = None

    async def on_startup() -> None:
        nonlocal sweeper
        sweeper = asyncio.create_task(store.run_sweeper(SESSION_SWEEP_INTERVAL_SEC))
        log.info("Bot is running. Owner X account: @%s, OCR mode: %s", OWNER_X, OCR_MODE)

    async def on_shutdown() -> None:
        if sweeper is not None:
            sweeper.cancel()
        await engine.close()
        log.info("Shut down cleanly")

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)

    # Register slash commands so Telegram shows them on "/"
    await setup_bot_commands(bot)

    # Start long-polling
    await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
