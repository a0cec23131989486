"""
security/rate_limiter.py
-------------------------
Per-user request throttling for the Telegram bot.
Every upload may end up as a paid remove.bg call, so each user gets at most
RATE_LIMIT_MESSAGES requests per RATE_LIMIT_WINDOW_SECONDS.
"""

import threading
import time
from collections import defaultdict, deque
from functools import wraps
from typing import Callable

from telegram import Update
from telegram.ext import ContextTypes

from config import RATE_LIMIT_MESSAGES, RATE_LIMIT_WINDOW_SECONDS
from utils.logger import get_logger

logger = get_logger(__name__)


class SlidingWindowLimiter:
    """
    Allows at most `limit` hits per key within any `window` seconds.

    Attributes:
        limit: Hits allowed per window.
        window: Window length in seconds.
    """

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: dict[int, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _expire(self, key: int, now: float) -> deque[float]:
        hits = self._hits[key]
        while hits and hits[0] <= now - self.window:
            hits.popleft()
        return hits

    def hit(self, key: int) -> bool:
        """Record a hit for `key`. Returns False (and records nothing) when over the limit."""
        with self._lock:
            now = self._clock()
            hits = self._expire(key, now)
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def retry_after(self, key: int) -> float:
        """Seconds until `key` may hit again; 0 if it may right now."""
        with self._lock:
            now = self._clock()
            hits = self._expire(key, now)
            if len(hits) < self.limit:
                return 0.0
            return max(0.0, hits[0] + self.window - now)


_limiter = SlidingWindowLimiter(RATE_LIMIT_MESSAGES, RATE_LIMIT_WINDOW_SECONDS)


def rate_limited(func: Callable):
    """
    Decorator that enforces the per-user limit before running a handler.
    Throttled requests get a reply telling the user how long to wait.
    """
    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
        user = update.effective_user
        if not user:
            return

        if not _limiter.hit(user.id):
            wait = _limiter.retry_after(user.id)
            logger.warning(f"⚠️ Rate limit hit for user {user.id} ({func.__name__})")
            await update.effective_message.reply_text(
                f"⚠️ Too many requests. Try again in {max(1, round(wait))}s."
            )
            return

        return await func(update, context, *args, **kwargs)

    return wrapper
