"""
LuckBlock Telegram bot entrypoint.

Runs long polling by default; set RUN_MODE=webhook together with
WEBHOOK_URL (and optionally PORT) to receive updates through a webhook.
"""
import logging
import sys

import config
from auditbot.app import AuditBotApp
from auditbot.logging import configure_logging

logger = configure_logging(getattr(logging, config.LOG_LEVEL, logging.INFO))


def main():
    if not config.BOT_TOKEN:
        logger.error("BOT_TOKEN not set in environment variables!")
        sys.exit(1)

    webhook_url = None
    if config.RUN_MODE == "webhook":
        try:
            webhook_url = config.validate_webhook_url()
        except ValueError as e:
            logger.error(f"Invalid webhook URL: {e}")
            sys.exit(1)
        logger.info(f"Using webhook URL: {webhook_url}")

    app = AuditBotApp(config.BOT_TOKEN, run_mode=config.RUN_MODE, port=config.PORT, webhook_url=webhook_url)
    try:
        app.run()
    except KeyboardInterrupt:
        logger.info("Bot interrupted by user")
    except Exception as e:
        logger.error(f"Bot failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
