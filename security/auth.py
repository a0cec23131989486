"""
security/auth.py
-----------------
Access control for the Telegram bot.
Identity is the Telegram user of the update; there is no login.
ALLOWED_USER_IDS whitelists users (empty means everyone), ADMIN_USER_IDS
may use admin commands and always pass the whitelist.
"""

from functools import wraps
from typing import Callable

from telegram import Update
from telegram.ext import ContextTypes

from config import ADMIN_USER_IDS, ALLOWED_USER_IDS
from utils.logger import get_logger

logger = get_logger(__name__)


def is_admin(telegram_id: int) -> bool:
    return telegram_id in ADMIN_USER_IDS


def is_allowed(telegram_id: int) -> bool:
    return not ALLOWED_USER_IDS or telegram_id in ALLOWED_USER_IDS or is_admin(telegram_id)


def _guard(check: Callable[[int], bool], denial: str):
    """Build a handler decorator that replies `denial` when `check(user_id)` fails."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE, *args, **kwargs):
            user = update.effective_user
            if not user:
                return

            if not check(user.id):
                logger.warning(
                    f"🚫 {func.__name__} denied: user_id={user.id}, "
                    f"username={user.username}, name={user.first_name}"
                )
                await update.effective_message.reply_text(denial)
                return

            return await func(update, context, *args, **kwargs)

        return wrapper
    return decorator


# Usage:
#     @authorized_only
#     async def my_handler(update, context): ...
authorized_only = _guard(is_allowed, "⛔ Sorry, this bot is private.")

# No admins configured means nobody gets through.
admin_only = _guard(is_admin, "⛔ Admin access required.")
