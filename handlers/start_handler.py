"""
handlers/start_handler.py
--------------------------
/start, /help and /myid.
/start registers the Telegram user as a `tg_<id>` row in the users table.
"""

import asyncio

from telegram import Update
from telegram.ext import ContextTypes

from db.errors import DatabaseError
from security.auth import authorized_only, is_admin
from security.rate_limiter import rate_limited
from utils.logger import get_logger

logger = get_logger(__name__)

HELP_TEXT = """
🤖 *BgBot*
Send me a picture and I'll remove its background 🖼️

*📤 Uploading:*
Send a photo, or the image as a *file* (JPG, PNG, WebP) to keep full quality.

*🔧 Commands:*
/bgstatus - plugin status and limits
/bgstats - processing statistics
/bgon - turn background removal on for you
/bgoff - turn background removal off for you
/bgformat - your output format (png, jpg, webp)
/myid - show your Telegram ID
"""

ADMIN_HELP_TEXT = """
*🛠️ Admin:*
/bgsettings max\\_file\\_size <1-20> - upload limit in MB
/bgsettings output\\_format <png|jpg|webp> - default output
/bgsettings enabled <on|off> - switch the plugin for everyone
"""


def telegram_username(telegram_id: int) -> str:
    """users.username used for a Telegram account."""
    return f"tg_{telegram_id}"


@authorized_only
@rate_limited
async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start - register the user and greet them."""
    tg_user = update.effective_user
    user_repo = context.bot_data["user_repo"]
    try:
        account = await asyncio.to_thread(user_repo.ensure_user, telegram_username(tg_user.id))
    except DatabaseError as e:
        logger.error(f"Could not register {tg_user.id}: {e}")
        await update.message.reply_text("❌ Something went wrong. Please try again later.")
        return

    logger.info(f"User {tg_user.id} started the bot as {account.username} (#{account.id})")
    await update.message.reply_text(
        f"Hi {tg_user.first_name}! 👋\n"
        f"Send me an image and I'll send it back without its background.\n\n"
        f"Type /help to see all commands."
    )


@authorized_only
@rate_limited
async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help - list commands; admins also see /bgsettings."""
    text = HELP_TEXT
    if is_admin(update.effective_user.id):
        text += ADMIN_HELP_TEXT
    await update.message.reply_text(text, parse_mode="Markdown")


@authorized_only
async def myid_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /myid - show the Telegram ID to put in the whitelist."""
    telegram_id = update.effective_user.id
    await update.message.reply_text(
        f"🆔 Your ID: `{telegram_id}` (account `{telegram_username(telegram_id)}`)\n"
        f"Add it to `ALLOWED_USER_IDS` (or `ADMIN_USER_IDS`) in `.env`.",
        parse_mode="Markdown",
    )
