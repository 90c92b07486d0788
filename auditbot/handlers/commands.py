from __future__ import annotations

import asyncio
import logging
from typing import Optional

from telegram import LinkPreviewOptions, Message, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes

from config import (
    AUDIT_ERROR_MESSAGE,
    AUDIT_STATUS_MESSAGE,
    AUDIT_STATUS_STARTING_MESSAGE,
    COMING_SOON_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    LOADING_MESSAGE,
    MISSING_AUDIT_ADDRESS_MESSAGE,
    MISSING_REGISTER_ADDRESS_MESSAGE,
    REGISTER_SUCCESS_MESSAGE,
    WELCOME_MESSAGE,
)
from auditbot.engine.poller import AuditPoller, spawn_background
from auditbot.formatting import replace_waiting_with_fallback
from auditbot.models import AuditEvent, AuditEventKind
from auditbot.services import audit_api

logger = logging.getLogger(__name__)

NO_PREVIEW = LinkPreviewOptions(is_disabled=True)
AUDIT_TASKS_KEY = "audit_tasks"
REPORT_DISPLAY_ERROR = "could not display the audit report"


def _first_arg(context: ContextTypes.DEFAULT_TYPE) -> Optional[str]:
    args = context.args or []
    return args[0] if args else None


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Sends the welcome message listing the available commands."""
    await update.message.reply_text(WELCOME_MESSAGE)


async def coming_soon_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Placeholder for /performance and /block0."""
    await update.message.reply_text(COMING_SOON_MESSAGE)


async def register_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Registers a wallet for air drops and early access.
    Usage: /register <address>

    The registration call is fire-and-forget: the user always gets the
    success acknowledgment once an address is given.
    """
    address = _first_arg(context)
    if not address:
        await update.message.reply_text(MISSING_REGISTER_ADDRESS_MESSAGE)
        return

    spawn_background(audit_api.register_wallet(address), f"Registration of {address}")
    await update.message.reply_text(REGISTER_SUCCESS_MESSAGE)


async def audit_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    Full token report for a contract: statistics and security right away,
    then the AI audit once the remote job has finished.
    Usage: /audit <contract address>

    The polling runs in a task kept in bot_data[AUDIT_TASKS_KEY] so this
    handler returns at once and shutdown can cancel audits still in flight.
    """
    contract_address = _first_arg(context)
    if not contract_address:
        await update.message.reply_text(MISSING_AUDIT_ADDRESS_MESSAGE)
        return

    chat = update.effective_chat
    logger.info(f"Audit requested for {contract_address} in chat {chat.id}")
    tasks = context.bot_data.setdefault(AUDIT_TASKS_KEY, set())
    spawn_background(run_audit(chat, contract_address), f"Audit of {contract_address}", registry=tasks)


async def run_audit(chat, contract_address: str) -> None:
    report_message = await chat.send_message(LOADING_MESSAGE)
    reply = AuditReply(chat, report_message)

    poller = AuditPoller(contract_address)
    async for event in poller.subscribe():
        await reply.apply(event)

    logger.info(f"Audit for {contract_address} finished in state {poller.state.value}")


async def cancel_audits(application: Application) -> None:
    """Abandon every audit still polling; used as the application's post_stop hook."""
    tasks = list(application.bot_data.get(AUDIT_TASKS_KEY) or ())
    if not tasks:
        return
    logger.info(f"Cancelling {len(tasks)} audit(s) in flight")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class AuditReply:
    """The report message and status message one /audit request keeps editing."""

    def __init__(self, chat, report_message: Message):
        self.chat = chat
        self.report_message = report_message
        self.status_message: Optional[Message] = None
        self.report: Optional[str] = None  # last report shown with the waiting line

    async def apply(self, event: AuditEvent) -> None:
        if event.kind is AuditEventKind.STARTED:
            self.report = event.report
            await _safe_edit(self.report_message, event.report, markdown=True)
            try:
                self.status_message = await self.chat.send_message(AUDIT_STATUS_STARTING_MESSAGE)
            except TelegramError as e:
                logger.warning(f"Could not send audit status message: {e}")

        elif event.kind is AuditEventKind.STATUS_CHANGED:
            if self.status_message is not None:
                await _safe_edit(self.status_message, AUDIT_STATUS_MESSAGE.format(status=event.status))

        elif event.kind is AuditEventKind.ENDED:
            if not await _safe_edit(self.report_message, event.report, markdown=True):
                fallback = replace_waiting_with_fallback(self.report) if self.report else None
                await self._show_error(REPORT_DISPLAY_ERROR, fallback)
                return
            if self.status_message is not None:
                await _safe_delete(self.status_message)
                self.status_message = None

        else:
            await self._show_error(event.error, event.report)

    async def _show_error(self, error: Optional[str], report: Optional[str]) -> None:
        if self.status_message is not None:
            await _safe_edit(self.status_message, AUDIT_ERROR_MESSAGE.format(error=error))
        if report is None:
            await _safe_edit(self.report_message, GENERIC_ERROR_MESSAGE)
        else:
            await _safe_edit(self.report_message, report, markdown=True)


async def _safe_edit(message: Message, text: str, markdown: bool = False) -> bool:
    kwargs = {"link_preview_options": NO_PREVIEW}
    if markdown:
        kwargs["parse_mode"] = ParseMode.MARKDOWN_V2
    try:
        await message.edit_text(text, **kwargs)
        return True
    except TelegramError as e:
        logger.warning(f"Failed to edit message {message.message_id}: {e}")
        return False


async def _safe_delete(message: Message) -> None:
    try:
        await message.delete()
    except TelegramError as e:
        logger.debug(f"Failed to delete message {message.message_id}: {e}")
