"""
Per-user throttle: a fixed window of N updates per user.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message, TelegramObject

log = logging.getLogger(__name__)

SLOW_DOWN_TEXT = "⏰ Whoa, slow down. Give it a minute."


class RateLimiter:
    def __init__(self, max_requests: int = 5, window: float = 60.0,
                 clock: Callable[[], float] = time.monotonic, max_buckets: int = 10_000):
        self.max_requests = max_requests
        self.window = window
        self.max_buckets = max_buckets
        self._clock = clock
        # user_id -> [count, reset_at]
        self._buckets: dict[int, list[float]] = {}

    def allow(self, user_id: int) -> bool:
        now = self._clock()
        bucket = self._buckets.get(user_id)
        if bucket is None and len(self._buckets) >= self.max_buckets:
            self.prune()
        if bucket is None or now > bucket[1]:
            bucket = [0, now + self.window]
            self._buckets[user_id] = bucket
        if bucket[0] >= self.max_requests:
            return False
        bucket[0] += 1
        return True

    def prune(self) -> None:
        """Drop buckets whose window already ended."""
        now = self._clock()
        for uid in [uid for uid, b in self._buckets.items() if now > b[1]]:
            del self._buckets[uid]


class RateLimitMiddleware(BaseMiddleware):
    def __init__(self, limiter: RateLimiter, exempt: Iterable[int] = ()):
        self.limiter = limiter
        self.exempt = set(exempt)

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = getattr(event, "from_user", None)
        if user is None or user.id in self.exempt or self.limiter.allow(user.id):
            return await handler(event, data)

        log.info("Rate-limited user %s", user.id)
        if isinstance(event, CallbackQuery):
            await event.answer(SLOW_DOWN_TEXT)
        elif isinstance(event, Message):
            await event.reply(SLOW_DOWN_TEXT)
        return None
