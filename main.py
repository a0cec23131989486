"""
main.py
-------
Entry point for BgBot.

Responsibilities:
    - Validate configuration, open the database pool and bootstrap the schema.
    - Mirror the Background Remover plugin into the plugins table.
    - Configure and start the Telegram bot with all handlers.
    - Close the pool on shutdown.
"""

import sys

from telegram import BotCommand, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from config import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    REMOVEBG_API_KEY,
    REMOVEBG_TIMEOUT_SECONDS,
    TELEGRAM_BOT_TOKEN,
    UPLOAD_DIR,
    ConfigError,
    DatabaseConfig,
)
from db.connection import ConnectionPool, open_pool
from db.errors import BootstrapError, DatabaseConnectionError
from db.init_db import ensure_schema
from handlers.background_handler import (
    bgformat_command,
    bgoff_command,
    bgon_command,
    bgsettings_command,
    bgstats_command,
    bgstatus_command,
    image_message,
)
from handlers.start_handler import help_command, myid_command, start_command
from plugins.background_remover import plugin_record
from repositories.plugin_repo import PluginRepository
from repositories.user_repo import UserRepository
from services.background_service import BackgroundService
from utils.logger import get_logger

logger = get_logger(__name__)


def bootstrap_database() -> ConnectionPool:
    """
    Open the pool, ensure the schema and register plugins.
    Any failure here is fatal: the pool is closed and the error propagates.
    """
    db = open_pool(DatabaseConfig.from_env())
    try:
        ensure_schema(db, ADMIN_PASSWORD, ADMIN_EMAIL)
        PluginRepository(db).upsert(plugin_record())
    except BaseException:
        db.close()
        raise
    return db


async def set_bot_commands(application: Application) -> None:
    """Register bot commands menu in Telegram on startup."""
    commands = [
        BotCommand("start", "🚀 Start the bot"),
        BotCommand("help", "📖 Show help"),
        BotCommand("bgstatus", "🖼️ Plugin status"),
        BotCommand("bgstats", "📊 Processing statistics"),
        BotCommand("bgon", "✅ Enable background removal"),
        BotCommand("bgoff", "⏸️ Disable background removal"),
        BotCommand("bgformat", "🎨 Set output format"),
        BotCommand("myid", "🆔 Your Telegram ID"),
    ]
    await application.bot.set_my_commands(commands)
    logger.info("Bot commands menu registered successfully.")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log exceptions that escaped a handler."""
    logger.error(f"Unhandled error while processing {update}: {context.error!r}")
    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text("❌ Something went wrong. Please try again later.")


def main() -> None:
    """Initialize and run the bot."""

    # ── 1. Database setup ─────────────────────────────────
    logger.info("Initializing database...")
    try:
        db = bootstrap_database()
    except (ConfigError, DatabaseConnectionError, BootstrapError) as e:
        logger.critical(f"Startup aborted: {e}")
        sys.exit(1)

    # ── 2. Build the Telegram application ─────────────────
    logger.info("Starting Telegram bot...")
    app = Application.builder().token(TELEGRAM_BOT_TOKEN).post_init(set_bot_commands).build()
    app.bot_data["user_repo"] = UserRepository(db)
    app.bot_data["background_service"] = BackgroundService(
        db, REMOVEBG_API_KEY, UPLOAD_DIR, timeout=REMOVEBG_TIMEOUT_SECONDS
    )

    # ── 3. Register command handlers ──────────────────────
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("myid", myid_command))
    app.add_handler(CommandHandler("bgstatus", bgstatus_command))
    app.add_handler(CommandHandler("bgstats", bgstats_command))
    app.add_handler(CommandHandler("bgon", bgon_command))
    app.add_handler(CommandHandler("bgoff", bgoff_command))
    app.add_handler(CommandHandler("bgformat", bgformat_command))
    app.add_handler(CommandHandler("bgsettings", bgsettings_command))

    # ── 4. Register upload handler ────────────────────────
    app.add_handler(MessageHandler(filters.PHOTO | filters.Document.IMAGE, image_message))
    app.add_error_handler(error_handler)

    # ── 5. Start polling ──────────────────────────────────
    logger.info("🚀 BgBot is running! Press Ctrl+C to stop.")
    try:
        app.run_polling(drop_pending_updates=True, allowed_updates=["message"])
    finally:
        # ── 6. Cleanup on shutdown ────────────────────────
        db.close()
        logger.info("BgBot stopped.")


if __name__ == "__main__":
    main()
