"""
Configuration for the LuckBlock Telegram bot.
Values come from the environment (a local .env file is loaded if present).
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Bot Configuration
BOT_TOKEN = os.getenv("BOT_TOKEN")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
RUN_MODE = os.getenv("RUN_MODE", "polling").lower()  # "polling" | "webhook"
PORT = int(os.getenv("PORT", "5000"))

# Remote APIs
LUCKBLOCK_API_URL = os.getenv("LUCKBLOCK_API_URL", "https://api.luckblock.io").rstrip("/")
LUCKBLOCK_WEB_APP_URL = os.getenv("LUCKBLOCK_WEB_APP_URL", "https://app.luckblock.io/audit")
GOPLUS_API_URL = os.getenv("GOPLUS_API_URL", "https://api.gopluslabs.io/api/v1").rstrip("/")
DEXSCREENER_API_URL = os.getenv("DEXSCREENER_API_URL", "https://api.dexscreener.com/latest").rstrip("/")
CHAIN_ID = os.getenv("CHAIN_ID", "1")  # GoPlus chain id, 1 = Ethereum mainnet
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))
USER_AGENT = "LuckBlockBot/1.0"

# Audit polling
AUDIT_POLL_INTERVAL_SECONDS = float(os.getenv("AUDIT_POLL_INTERVAL_SECONDS", "2"))
AUDIT_POLL_MAX_FAILURES = int(os.getenv("AUDIT_POLL_MAX_FAILURES", "5"))  # consecutive failed status checks
ISSUE_DESCRIPTION_MAX_LENGTH = 200

# Messages
WELCOME_MESSAGE = (
    "🤖 Welcome to the LuckBlock Telegram bot! 🤖\n\n"
    "/audit - Full analysis of any erc20 smart contract.\n\n"
    "/performance - Track the PnL of any wallet (limited to uniswap v2 during BETA mode)\n\n"
    "/block0 - First one in, first one out. The fastest DeFi trading bot, guaranteed.\n\n"
    "/register - Register your wallet for air drops, early sniper access and more."
)
COMING_SOON_MESSAGE = "Coming soon... 🔒"
MISSING_AUDIT_ADDRESS_MESSAGE = "Please provide a contract address"
MISSING_REGISTER_ADDRESS_MESSAGE = "Please provide a valid address (e.g. /register 0x1234...)"
REGISTER_SUCCESS_MESSAGE = "Registered Successfully! ✅"
LOADING_MESSAGE = "Loading insights..."
GENERIC_ERROR_MESSAGE = "❌ Oops, something went wrong!"
AUDIT_STATUS_STARTING_MESSAGE = "🔍 (audit generation AI) : starting..."
AUDIT_STATUS_MESSAGE = "🔍 (audit generation AI): {status}"
AUDIT_ERROR_MESSAGE = "❌ Oops, something went wrong! ({error})"


def get_base_webhook_url() -> str:
    """Return the base webhook URL (without token appended).

    Only used when RUN_MODE is "webhook". Trailing slashes are removed so
    the token can be appended consistently.
    """
    base = os.getenv("WEBHOOK_URL")
    if not base:
        return ""
    return base.rstrip("/")


def get_final_webhook_url() -> str:
    """Return full webhook url (with token appended unless already present)."""
    base = get_base_webhook_url()
    token = os.getenv("BOT_TOKEN")
    if not base or not token:
        return base
    if base.endswith(token):
        return base
    if base.endswith("/webhook"):
        return f"{base}/{token}"
    if "/" not in base.split("://", 1)[-1]:  # No path after domain
        return f"{base}/webhook/{token}"
    return f"{base}/{token}"


def validate_webhook_url() -> str:
    """Return the final webhook url or raise ValueError when it is unusable."""
    url = get_final_webhook_url()
    if not url:
        raise ValueError("WEBHOOK_URL is required in webhook mode")
    if not url.startswith("https://"):
        raise ValueError(f"Webhook URL must use https: {url}")
    return url
