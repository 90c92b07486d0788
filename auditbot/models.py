from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


TERMINAL_STATUSES = ("ended", "errored", "unknown")


@dataclass
class AuditRequest:
    contract_address: str


@dataclass
class TokenStatistics:
    contract_address: str
    name: str
    symbol: str
    security: Dict[str, Any] = field(default_factory=dict)  # raw GoPlus token_security record
    price_usd: Optional[float] = None
    market_cap: Optional[float] = None
    liquidity_usd: Optional[float] = None
    volume_24h: Optional[float] = None
    price_change_24h: Optional[float] = None  # percent
    holder_count: Optional[int] = None
    pair_url: Optional[str] = None


class PollerState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    POLLING = "polling"
    ENDED = "ended"
    ERRORED = "errored"


class AuditEventKind(str, Enum):
    STARTED = "started"
    STATUS_CHANGED = "status_changed"
    ENDED = "ended"
    ERRORED = "errored"


@dataclass(frozen=True)
class AuditEvent:
    kind: AuditEventKind
    status: Optional[str] = None
    report: Optional[str] = None  # MarkdownV2
    error: Optional[str] = None


def is_terminal_status(status: Optional[str]) -> bool:
    return (status or "unknown") in TERMINAL_STATUSES
