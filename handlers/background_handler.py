"""
handlers/background_handler.py
-------------------------------
Handles image uploads and the Background Remover commands.
Delegates all logic to BackgroundService; blocking work runs in a worker
thread so one slow upload or a busy connection pool doesn't stall the bot.
"""

import asyncio

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from ai.removebg import RemoveBgError
from db.errors import DatabaseError
from models.user import User
from plugins.background_remover import OUTPUT_FORMATS
from security.auth import admin_only, authorized_only
from security.rate_limiter import rate_limited
from services.background_service import (
    BackgroundService,
    ImageValidationError,
    PluginDisabledError,
    SettingsError,
)
from handlers.start_handler import telegram_username
from utils.logger import get_logger

logger = get_logger(__name__)

_GENERIC_ERROR = "❌ Something went wrong. Please try again later."


def _service(context: ContextTypes.DEFAULT_TYPE) -> BackgroundService:
    return context.bot_data["background_service"]


async def _current_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> User:
    user_repo = context.bot_data["user_repo"]
    return await asyncio.to_thread(
        user_repo.ensure_user, telegram_username(update.effective_user.id)
    )


@authorized_only
@rate_limited
async def image_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle a photo or an image document: remove its background and send
    the result back as a file.

    The size Telegram reports is checked before anything is downloaded.
    """
    message = update.effective_message

    if message.photo:
        upload = message.photo[-1]  # largest size
        filename = f"photo_{upload.file_unique_id}.jpg"  # Telegram re-encodes photos as JPEG
    elif message.document:
        upload = message.document
        filename = upload.file_name or "upload"
    else:
        return

    service = _service(context)
    try:
        user = await _current_user(update, context)
        config = await asyncio.to_thread(service.effective_config, user.id)
        service.check_size(upload.file_size, config)

        await message.reply_text("🖼️ Removing background...")
        tg_file = await upload.get_file()
        data = bytes(await tg_file.download_as_bytearray())

        result = await asyncio.to_thread(service.remove_background, user, filename, data)
    except (ImageValidationError, PluginDisabledError) as e:
        await message.reply_text(f"⚠️ {e}")
        return
    except RemoveBgError as e:
        logger.error(f"Background removal error for {update.effective_user.id}: {e}")
        await message.reply_text("❌ Failed to remove background. Please try again later.")
        return
    except TelegramError as e:
        logger.error(f"Could not download upload from {update.effective_user.id}: {e}")
        await message.reply_text("❌ Could not download your file. Please try again.")
        return
    except DatabaseError as e:
        logger.error(f"Database error while processing upload: {e}")
        await message.reply_text(_GENERIC_ERROR)
        return

    await message.reply_document(
        document=result.data,
        filename=result.filename,
        caption="✅ Background removed successfully",
    )


@authorized_only
@rate_limited
async def bgstatus_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /bgstatus - show plugin version and limits."""
    try:
        status = await asyncio.to_thread(_service(context).status)
    except (PluginDisabledError, DatabaseError) as e:
        await update.message.reply_text(f"⚠️ {e}")
        return

    cfg = status["config"]
    await update.message.reply_text(
        f"🖼️ {status['plugin']} v{status['version']} "
        f"({'enabled' if status['enabled'] else 'disabled'})\n"
        f"  📦 Max size: {cfg['max_file_size'] / 1024 / 1024:g}MB\n"
        f"  📂 Formats: {', '.join(cfg['allowed_formats'])}\n"
        f"  🎨 Output: {cfg['output_format']}"
    )


@authorized_only
@rate_limited
async def bgstats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /bgstats - show processed count and success rate."""
    try:
        stats = await asyncio.to_thread(_service(context).stats)
    except DatabaseError as e:
        logger.error(f"Failed to load stats: {e}")
        await update.message.reply_text(_GENERIC_ERROR)
        return

    await update.message.reply_text(
        f"📊 Images processed: {stats['processed']}\n"
        f"❌ Failed: {stats['failed']}\n"
        f"✅ Success rate: {stats['success_rate']}"
    )


async def _toggle(update: Update, context: ContextTypes.DEFAULT_TYPE, enabled: bool) -> None:
    try:
        user = await _current_user(update, context)
        await asyncio.to_thread(_service(context).set_user_enabled, user, enabled)
    except DatabaseError as e:
        logger.error(f"Failed to toggle plugin for {update.effective_user.id}: {e}")
        await update.message.reply_text(_GENERIC_ERROR)
        return
    await update.message.reply_text(
        "✅ Background removal is on." if enabled else "⏸️ Background removal is off."
    )


@authorized_only
@rate_limited
async def bgon_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /bgon - enable the plugin for this user."""
    await _toggle(update, context, True)


@authorized_only
@rate_limited
async def bgoff_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /bgoff - disable the plugin for this user."""
    await _toggle(update, context, False)


@authorized_only
@rate_limited
async def bgformat_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /bgformat <png|jpg|webp> - set this user's output format.
    Usage: /bgformat webp
    """
    if not context.args:
        await update.message.reply_text(f"⚠️ Usage: /bgformat <{'|'.join(OUTPUT_FORMATS)}>")
        return

    try:
        user = await _current_user(update, context)
        override = await asyncio.to_thread(
            _service(context).set_user_output_format, user, context.args[0]
        )
    except SettingsError as e:
        await update.message.reply_text(f"⚠️ {e}")
        return
    except DatabaseError as e:
        logger.error(f"Failed to set output format: {e}")
        await update.message.reply_text(_GENERIC_ERROR)
        return

    await update.message.reply_text(f"🎨 Output format set to {override['output_format']}.")


@admin_only
async def bgsettings_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /bgsettings <key> <value> - change plugin settings (admins only).

    Examples:
        /bgsettings max_file_size 15
        /bgsettings output_format webp
        /bgsettings enabled off
    """
    if not context.args or len(context.args) < 2:
        await update.message.reply_text(
            "⚠️ Usage: /bgsettings <max_file_size|output_format|enabled> <value>"
        )
        return

    key, value = context.args[0], context.args[1]
    try:
        admin = await _current_user(update, context)
        changes = await asyncio.to_thread(
            _service(context).update_setting, key, value, admin.id
        )
    except SettingsError as e:
        await update.message.reply_text(f"⚠️ {e}")
        return
    except DatabaseError as e:
        logger.error(f"Failed to update settings: {e}")
        await update.message.reply_text(_GENERIC_ERROR)
        return

    logger.info(f"Admin {update.effective_user.id} changed settings: {changes}")
    await update.message.reply_text("✅ Settings saved successfully.")
