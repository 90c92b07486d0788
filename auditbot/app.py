"""
Application object for the LuckBlock bot.
Owns the python-telegram-bot Application: handler registration, start and stop.
"""
from __future__ import annotations

import logging
import signal
import traceback
from typing import Optional

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from auditbot.handlers.commands import (
    audit_command,
    cancel_audits,
    coming_soon_command,
    register_command,
    start_command,
)

logger = logging.getLogger(__name__)

STOP_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGUSR1", "SIGUSR2")
    if hasattr(signal, name)
)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """Log handler errors without crashing the bot."""
    error = context.error
    logger.error(f"Error while handling update {update}: {error}")
    if error is not None:
        logger.error("".join(traceback.format_exception(type(error), error, error.__traceback__)))


async def _on_started(application: Application):
    logger.info("🤖 luckblock bot is started!")


async def _on_stopped(application: Application):
    logger.info("🤖 luckblock bot is stopped!")


class AuditBotApp:
    def __init__(self, token: str, run_mode: str = "polling", port: int = 5000, webhook_url: Optional[str] = None):
        if not token:
            raise ValueError("A bot token is required")
        if run_mode not in ("polling", "webhook"):
            raise ValueError(f"Unknown run mode: {run_mode}")
        if run_mode == "webhook" and not webhook_url:
            raise ValueError("webhook_url is required in webhook mode")
        self.token = token
        self.run_mode = run_mode
        self.port = port
        self.webhook_url = webhook_url
        self.application: Optional[Application] = None

    def build(self) -> Application:
        application = (
            Application.builder()
            .token(self.token)
            .post_init(_on_started)
            .post_stop(cancel_audits)
            .post_shutdown(_on_stopped)
            .build()
        )

        application.add_handler(CommandHandler("start", start_command))
        application.add_handler(CommandHandler("performance", coming_soon_command))
        application.add_handler(CommandHandler("block0", coming_soon_command))
        application.add_handler(CommandHandler("register", register_command))
        # audit_command hands polling to a tracked task, cancelled by post_stop
        application.add_handler(CommandHandler("audit", audit_command))
        application.add_error_handler(error_handler)

        self.application = application
        return application

    def run(self) -> None:
        """Blocks until one of STOP_SIGNALS is received."""
        application = self.application or self.build()
        if self.run_mode == "webhook":
            url_path = f"/webhook/{self.token}"
            logger.info(f"Starting bot in webhook mode on port {self.port}...")
            application.run_webhook(
                listen="0.0.0.0",
                port=self.port,
                url_path=url_path,
                webhook_url=self.webhook_url,
                stop_signals=STOP_SIGNALS,
            )
        else:
            logger.info("Starting bot in polling mode...")
            application.run_polling(allowed_updates=Update.ALL_TYPES, stop_signals=STOP_SIGNALS)
