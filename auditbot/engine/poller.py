from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional, Set

from config import AUDIT_POLL_INTERVAL_SECONDS, AUDIT_POLL_MAX_FAILURES
from auditbot.formatting import format_token_statistics, replace_waiting_with_fallback
from auditbot.models import AuditEvent, AuditEventKind, AuditRequest, PollerState, is_terminal_status
from auditbot.services import audit_api, statistics as statistics_api

logger = logging.getLogger(__name__)

BASELINE_ERROR = "could not fetch data"
AUDIT_REPORT_ERROR = "could not fetch audit report"
STATUS_CHECK_ERROR = "could not check audit status"
UNKNOWN_ERROR = "Unknown error"

# Fire-and-forget tasks must stay referenced until they finish
_background_tasks: Set[asyncio.Task] = set()


def spawn_background(coro, description: str, registry: Optional[Set[asyncio.Task]] = None) -> asyncio.Task:
    """Run coro as a task kept in `registry` (module-wide by default) until it finishes."""
    tasks = _background_tasks if registry is None else registry
    task = asyncio.create_task(coro)
    tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        tasks.discard(t)
        if t.cancelled():
            logger.info(f"{description} cancelled")
            return
        error = t.exception()
        if error is not None:
            logger.warning(f"{description} failed: {error}")

    task.add_done_callback(_done)
    return task


class AuditPoller:
    """
    Drives one audit request from baseline fetch to a terminal state.

    Consumers iterate `subscribe()` and receive AuditEvents; the poller never
    talks to Telegram. Status checks run one at a time, so a slow check can
    never be overtaken by a later one.
    """

    def __init__(
        self,
        contract_address: str,
        interval: float = AUDIT_POLL_INTERVAL_SECONDS,
        max_failures: int = AUDIT_POLL_MAX_FAILURES,
    ):
        self.request = AuditRequest(contract_address=contract_address)
        self.interval = interval
        self.max_failures = max_failures
        self.state = PollerState.IDLE
        self.last_status: Optional[str] = None
        self._statistics = None
        self._report: Optional[str] = None

    @property
    def contract_address(self) -> str:
        return self.request.contract_address

    async def subscribe(self) -> AsyncIterator[AuditEvent]:
        if self.state is not PollerState.IDLE:
            raise RuntimeError(f"Audit poller for {self.contract_address} already started")
        self.state = PollerState.STARTED

        try:
            statistics, initial_audit = await asyncio.gather(
                statistics_api.fetch_token_statistics(self.contract_address),
                audit_api.fetch_audit_data(self.contract_address),
            )
        except Exception as e:
            logger.error(f"Baseline fetch failed for {self.contract_address}: {e}", exc_info=True)
            statistics, initial_audit = None, None

        if statistics is None:
            yield self._error(BASELINE_ERROR, with_report=False)
            return
        self._statistics = statistics

        audit = self._parse_ready_audit(initial_audit)
        if audit is not None:
            logger.info(f"Audit already available for {self.contract_address}")
            yield self._end(audit)
            return

        self._report = format_token_statistics(statistics)
        self.state = PollerState.POLLING
        spawn_background(audit_api.trigger_audit(self.contract_address), f"Audit trigger for {self.contract_address}")
        yield AuditEvent(AuditEventKind.STARTED, report=self._report)

        failures = 0
        while self.state is PollerState.POLLING:
            await asyncio.sleep(self.interval)
            response = await audit_api.fetch_audit_status(self.contract_address)

            if response is None:
                failures += 1
                logger.warning(f"Status check {failures}/{self.max_failures} failed for {self.contract_address}")
                if failures >= self.max_failures:
                    yield self._error(STATUS_CHECK_ERROR)
                continue
            failures = 0

            event = await self._on_status(response)
            if event is not None:
                yield event

    async def _on_status(self, response: Dict[str, Any]) -> Optional[AuditEvent]:
        status = str(response.get("status") or "unknown")

        if status == "ended":
            audit_data = await audit_api.fetch_audit_data(self.contract_address)
            audit = self._parse_ready_audit(audit_data)
            if audit is None:
                return self._error(AUDIT_REPORT_ERROR)
            return self._end(audit)

        if is_terminal_status(status):
            return self._error(response.get("error") or UNKNOWN_ERROR)

        if status == self.last_status:
            return None
        logger.debug(f"Audit status for {self.contract_address}: {self.last_status} -> {status}")
        self.last_status = status
        return AuditEvent(AuditEventKind.STATUS_CHANGED, status=status)

    def _parse_ready_audit(self, audit_data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not audit_api.audit_is_ready(audit_data):
            return None
        try:
            return audit_api.parse_audit_payload(audit_data.get("data"))
        except audit_api.AuditPayloadError as e:
            logger.warning(f"Unreadable audit payload for {self.contract_address}: {e}")
            return None

    def _end(self, audit: Dict[str, Any]) -> AuditEvent:
        self.state = PollerState.ENDED
        self.last_status = "ended"
        self._report = format_token_statistics(self._statistics, audit)
        return AuditEvent(AuditEventKind.ENDED, status="ended", report=self._report)

    def _error(self, error: str, with_report: bool = True) -> AuditEvent:
        self.state = PollerState.ERRORED
        logger.info(f"Audit for {self.contract_address} errored: {error}")
        report = replace_waiting_with_fallback(self._report) if with_report and self._report else None
        return AuditEvent(AuditEventKind.ERRORED, error=error, report=report)

