import asyncio
import json
import sys
import os

import pytest
from telegram.constants import MessageLimit, ParseMode
from telegram.error import BadRequest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config
from auditbot.engine.poller import AuditPoller
from auditbot.formatting import AUDIT_FALLBACK_MESSAGE, WAITING_GENERATION_AUDIT_MESSAGE
from auditbot.handlers import commands
from auditbot.models import AuditEvent, AuditEventKind, TokenStatistics
from auditbot.services import audit_api, http, statistics


ADDRESS = "0x6982508145454ce325ddbe47a25d4ec3d2311933"


class FakeMessage:
    def __init__(self, text, message_id):
        self.text = text
        self.message_id = message_id
        self.edits = []
        self.deleted = False
        self.fail_edits = False

    async def edit_text(self, text, **kwargs):
        if self.fail_edits:
            raise BadRequest("Message is not modified")
        if len(text) > MessageLimit.MAX_TEXT_LENGTH:
            raise BadRequest("Message is too long")
        self.edits.append((text, kwargs))
        self.text = text

    async def delete(self):
        self.deleted = True


class FakeChat:
    def __init__(self):
        self.id = -100123
        self.sent = []

    async def send_message(self, text, **kwargs):
        msg = FakeMessage(text, len(self.sent) + 100)
        self.sent.append(msg)
        return msg


class FakeIncoming:
    def __init__(self):
        self.replies = []

    async def reply_text(self, text, **kwargs):
        self.replies.append(text)


class FakeUpdate:
    def __init__(self):
        self.message = FakeIncoming()
        self.effective_chat = FakeChat()


class FakeContext:
    def __init__(self, args=None):
        self.args = args
        self.bot_data = {}


class ScriptedPoller:
    def __init__(self, events):
        self._events = events
        self.state = type("S", (), {"value": "done"})()

    async def subscribe(self):
        for event in self._events:
            yield event


def script(monkeypatch, events):
    monkeypatch.setattr(commands, "AuditPoller", lambda address: ScriptedPoller(events))


async def run_audit_command(update, context):
    await commands.audit_command(update, context)
    await asyncio.gather(*context.bot_data.get(commands.AUDIT_TASKS_KEY, ()))


@pytest.fixture
def no_network(monkeypatch):
    async def _forbidden(*args, **kwargs):
        raise AssertionError("network call made")

    monkeypatch.setattr(http, "get_json", _forbidden)
    monkeypatch.setattr(http, "post", _forbidden)


@pytest.mark.asyncio
async def test_start_sends_welcome():
    update = FakeUpdate()
    await commands.start_command(update, FakeContext())
    assert update.message.replies == [config.WELCOME_MESSAGE]


@pytest.mark.asyncio
async def test_coming_soon_commands():
    update = FakeUpdate()
    await commands.coming_soon_command(update, FakeContext())
    assert update.message.replies == ["Coming soon... 🔒"]


@pytest.mark.asyncio
@pytest.mark.parametrize("args", [None, []])
async def test_register_requires_address(args, no_network):
    update = FakeUpdate()
    await commands.register_command(update, FakeContext(args))
    await asyncio.sleep(0)
    assert update.message.replies == ["Please provide a valid address (e.g. /register 0x1234...)"]


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [True, False])
async def test_register_always_acknowledges(monkeypatch, outcome):
    calls = []

    async def _register(address):
        calls.append(address)
        return outcome

    monkeypatch.setattr(audit_api, "register_wallet", _register)
    update = FakeUpdate()
    await commands.register_command(update, FakeContext([ADDRESS]))
    await asyncio.sleep(0)

    assert update.message.replies == ["Registered Successfully! ✅"]
    assert calls == [ADDRESS]


@pytest.mark.asyncio
@pytest.mark.parametrize("args", [None, []])
async def test_audit_requires_address(args, no_network, monkeypatch):
    monkeypatch.setattr(commands, "AuditPoller", None)
    update = FakeUpdate()
    await commands.audit_command(update, FakeContext(args))
    assert update.message.replies == ["Please provide a contract address"]
    assert update.effective_chat.sent == []


@pytest.mark.asyncio
async def test_audit_baseline_failure(monkeypatch):
    script(monkeypatch, [AuditEvent(AuditEventKind.ERRORED, error="could not fetch data")])
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    chat = update.effective_chat
    assert len(chat.sent) == 1
    placeholder = chat.sent[0]
    assert placeholder.text == "❌ Oops, something went wrong!"
    assert len(placeholder.edits) == 1


@pytest.mark.asyncio
async def test_audit_status_updates_then_final_report(monkeypatch):
    script(monkeypatch, [
        AuditEvent(AuditEventKind.STARTED, report="*stats* waiting"),
        AuditEvent(AuditEventKind.STATUS_CHANGED, status="queued"),
        AuditEvent(AuditEventKind.STATUS_CHANGED, status="running"),
        AuditEvent(AuditEventKind.ENDED, status="ended", report="*stats* issues"),
    ])
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    placeholder, status = update.effective_chat.sent
    assert [t for t, _ in placeholder.edits] == ["*stats* waiting", "*stats* issues"]
    assert all(kw["parse_mode"] == ParseMode.MARKDOWN_V2 for _, kw in placeholder.edits)
    assert all(kw["link_preview_options"].is_disabled for _, kw in placeholder.edits)
    assert [t for t, _ in status.edits] == [
        "🔍 (audit generation AI): queued",
        "🔍 (audit generation AI): running",
    ]
    assert status.deleted


@pytest.mark.asyncio
async def test_audit_ready_immediately_sends_no_status_message(monkeypatch):
    script(monkeypatch, [AuditEvent(AuditEventKind.ENDED, status="ended", report="full")])
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    assert len(update.effective_chat.sent) == 1
    assert update.effective_chat.sent[0].text == "full"


@pytest.mark.asyncio
async def test_audit_remote_error(monkeypatch):
    script(monkeypatch, [
        AuditEvent(AuditEventKind.STARTED, report="stats waiting"),
        AuditEvent(AuditEventKind.ERRORED, error="compilation failed", report="stats fallback"),
    ])
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    placeholder, status = update.effective_chat.sent
    assert status.text == "❌ Oops, something went wrong! (compilation failed)"
    assert not status.deleted
    assert placeholder.text == "stats fallback"


@pytest.mark.asyncio
async def test_failed_edits_do_not_stop_the_audit(monkeypatch):
    script(monkeypatch, [
        AuditEvent(AuditEventKind.STARTED, report="stats waiting"),
        AuditEvent(AuditEventKind.STATUS_CHANGED, status="running"),
        AuditEvent(AuditEventKind.ENDED, status="ended", report="done"),
    ])
    original_send = FakeChat.send_message

    async def _send_failing(self, text, **kwargs):
        msg = await original_send(self, text, **kwargs)
        if text.startswith("🔍"):
            msg.fail_edits = True
        return msg

    monkeypatch.setattr(FakeChat, "send_message", _send_failing)
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    placeholder, status = update.effective_chat.sent
    assert placeholder.text == "done"
    assert status.deleted


@pytest.mark.asyncio
async def test_audit_end_to_end_with_real_poller(monkeypatch):
    stats = TokenStatistics(contract_address=ADDRESS, name="Pepe", symbol="PEPE")
    statuses = [{"status": "queued"}, {"status": "ended"}]
    audit_responses = [None, {"status": "success", "data": '{"issues": [{"title": "Owner", "description": "d"}]}'}]

    async def _stats(address):
        return stats

    async def _audit_data(address):
        return audit_responses.pop(0)

    async def _trigger(address):
        return True

    async def _status(address):
        return statuses.pop(0)

    monkeypatch.setattr(statistics, "fetch_token_statistics", _stats)
    monkeypatch.setattr(audit_api, "fetch_audit_data", _audit_data)
    monkeypatch.setattr(audit_api, "trigger_audit", _trigger)
    monkeypatch.setattr(audit_api, "fetch_audit_status", _status)
    monkeypatch.setattr(commands, "AuditPoller", lambda address: AuditPoller(address, interval=0))
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    placeholder, status = update.effective_chat.sent
    assert placeholder.text.startswith("*Pepe*")
    assert "*1\\. Owner*" in placeholder.text
    assert status.edits[0][0] == "🔍 (audit generation AI): queued"
    assert status.deleted


def _never_ending_audit(monkeypatch):
    stats = TokenStatistics(contract_address=ADDRESS, name="Pepe", symbol="PEPE")

    async def _stats(address):
        return stats

    async def _audit_data(address):
        return None

    async def _trigger(address):
        return True

    async def _status(address):
        return {"status": "running"}

    monkeypatch.setattr(statistics, "fetch_token_statistics", _stats)
    monkeypatch.setattr(audit_api, "fetch_audit_data", _audit_data)
    monkeypatch.setattr(audit_api, "trigger_audit", _trigger)
    monkeypatch.setattr(audit_api, "fetch_audit_status", _status)
    monkeypatch.setattr(commands, "AuditPoller", lambda address: AuditPoller(address, interval=0.01))


@pytest.mark.asyncio
async def test_audit_handler_returns_while_polling_continues(monkeypatch):
    _never_ending_audit(monkeypatch)
    update = FakeUpdate()
    context = FakeContext([ADDRESS])

    await asyncio.wait_for(commands.audit_command(update, context), timeout=1)
    await asyncio.sleep(0.05)

    tasks = list(context.bot_data[commands.AUDIT_TASKS_KEY])
    assert len(tasks) == 1
    assert not tasks[0].done()
    assert update.effective_chat.sent[1].text.startswith("🔍 (audit generation AI)")

    await commands.cancel_audits(type("App", (), {"bot_data": context.bot_data})())


@pytest.mark.asyncio
async def test_shutdown_abandons_audits_in_flight(monkeypatch):
    from auditbot.app import AuditBotApp

    _never_ending_audit(monkeypatch)
    application = AuditBotApp("123456:TEST-TOKEN").build()
    context = FakeContext([ADDRESS])
    context.bot_data = application.bot_data
    await commands.audit_command(FakeUpdate(), context)
    await asyncio.sleep(0.05)
    task = next(iter(application.bot_data[commands.AUDIT_TASKS_KEY]))

    await asyncio.wait_for(application.post_stop(application), timeout=3)
    await asyncio.sleep(0)

    assert task.cancelled()
    assert not application.bot_data[commands.AUDIT_TASKS_KEY]


@pytest.mark.asyncio
async def test_cancel_audits_without_any_running():
    await commands.cancel_audits(type("App", (), {"bot_data": {}})())


@pytest.mark.asyncio
async def test_long_audit_report_still_fits(monkeypatch):
    stats = TokenStatistics(contract_address=ADDRESS, name="Pepe", symbol="PEPE",
                            security={"is_honeypot": "0", "buy_tax": "0.01"})
    issues = [{"title": f"Issue {n}", "severity": "high", "description": "x." * 150} for n in range(15)]
    statuses = [{"status": "running"}, {"status": "ended"}]
    audit_responses = [None, {"status": "success", "data": json.dumps({"issues": issues})}]

    async def _stats(address):
        return stats

    async def _audit_data(address):
        return audit_responses.pop(0)

    async def _trigger(address):
        return True

    async def _status(address):
        return statuses.pop(0)

    monkeypatch.setattr(statistics, "fetch_token_statistics", _stats)
    monkeypatch.setattr(audit_api, "fetch_audit_data", _audit_data)
    monkeypatch.setattr(audit_api, "trigger_audit", _trigger)
    monkeypatch.setattr(audit_api, "fetch_audit_status", _status)
    monkeypatch.setattr(commands, "AuditPoller", lambda address: AuditPoller(address, interval=0))
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    placeholder, status = update.effective_chat.sent
    assert WAITING_GENERATION_AUDIT_MESSAGE not in placeholder.text
    assert "more issue\\(s\\)" in placeholder.text
    assert len(placeholder.text) <= MessageLimit.MAX_TEXT_LENGTH
    assert status.deleted


@pytest.mark.asyncio
async def test_rejected_final_report_keeps_status_and_shows_error(monkeypatch):
    script(monkeypatch, [
        AuditEvent(AuditEventKind.STARTED, report=f"stats\n\n{WAITING_GENERATION_AUDIT_MESSAGE}"),
        AuditEvent(AuditEventKind.STATUS_CHANGED, status="running"),
        AuditEvent(AuditEventKind.ENDED, status="ended", report="y" * 5000),
    ])
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    placeholder, status = update.effective_chat.sent
    assert not status.deleted
    assert status.text == f"❌ Oops, something went wrong! ({commands.REPORT_DISPLAY_ERROR})"
    assert placeholder.text == f"stats\n\n{AUDIT_FALLBACK_MESSAGE}"


@pytest.mark.asyncio
async def test_rejected_ready_report_shows_generic_error(monkeypatch):
    script(monkeypatch, [AuditEvent(AuditEventKind.ENDED, status="ended", report="y" * 5000)])
    update = FakeUpdate()

    await run_audit_command(update, FakeContext([ADDRESS]))

    assert len(update.effective_chat.sent) == 1
    assert update.effective_chat.sent[0].text == "❌ Oops, something went wrong!"
