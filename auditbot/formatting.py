"""
Telegram MarkdownV2 rendering of token statistics and audit reports.

Everything here is pure: the same statistics and audit payload always
render to the same text.
"""
from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from telegram.constants import MessageLimit
from telegram.helpers import escape_markdown

from config import ISSUE_DESCRIPTION_MAX_LENGTH, LUCKBLOCK_WEB_APP_URL
from auditbot.models import TokenStatistics


WAITING_GENERATION_AUDIT_MESSAGE = "⏳ _Audit report generation in progress\\.\\.\\._"
AUDIT_FALLBACK_MESSAGE = (
    f"[Use our web app]({escape_markdown(LUCKBLOCK_WEB_APP_URL, version=2, entity_type='text_link')})"
    " to generate the audit report\\."
)

SEVERITY_ICONS = {
    "critical": "🔴",
    "high": "🟠",
    "medium": "🟡",
    "low": "🟢",
    "informational": "🔵",
}


def _esc(text: Any) -> str:
    return escape_markdown(str(text), version=2)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def format_usd(value: float) -> str:
    """$1.23B / $4.56M / $7.89K, plain dollars above 1, four significant digits below."""
    magnitude = abs(value)
    if magnitude >= 1_000_000_000:
        return f"${value / 1_000_000_000:.2f}B"
    if magnitude >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if magnitude >= 1_000:
        return f"${value / 1_000:.2f}K"
    if magnitude >= 1 or magnitude == 0:
        return f"${value:,.2f}"
    decimals = -math.floor(math.log10(magnitude)) + 3
    return f"${value:.{decimals}f}"


def format_percentage(value: float) -> str:
    return f"{value:+.2f}%"


def format_count(value: int) -> str:
    return f"{value:,}"


def _yes_no(value: int) -> str:
    return "Yes" if value else "No"


def _tax(value: float) -> str:
    # GoPlus reports taxes as fractions ("0.05" is 5%)
    return f"{round(value * 100, 2):g}%"


# ---------------------------------------------------------------------------
# Security flags
# ---------------------------------------------------------------------------

class SecurityFlag(NamedTuple):
    field: str
    parser: Callable[[str], Any]
    is_positive: Callable[[Any], bool]
    formatter: Callable[[Any], str]
    label: str


SECURITY_FLAGS: List[SecurityFlag] = [
    SecurityFlag("is_open_source", int, lambda v: v == 1, _yes_no, "Contract verified"),
    SecurityFlag("is_honeypot", int, lambda v: v == 0, _yes_no, "Honeypot"),
    SecurityFlag("buy_tax", float, lambda v: v <= 0.1, _tax, "Buy tax"),
    SecurityFlag("sell_tax", float, lambda v: v <= 0.1, _tax, "Sell tax"),
    SecurityFlag("cannot_sell_all", int, lambda v: v == 0, _yes_no, "Sell limit"),
    SecurityFlag("is_mintable", int, lambda v: v == 0, _yes_no, "Mintable"),
    SecurityFlag("is_proxy", int, lambda v: v == 0, _yes_no, "Proxy contract"),
    SecurityFlag("hidden_owner", int, lambda v: v == 0, _yes_no, "Hidden owner"),
    SecurityFlag("can_take_back_ownership", int, lambda v: v == 0, _yes_no, "Can reclaim ownership"),
    SecurityFlag("owner_change_balance", int, lambda v: v == 0, _yes_no, "Owner can change balances"),
    SecurityFlag("is_blacklisted", int, lambda v: v == 0, _yes_no, "Blacklist"),
    SecurityFlag("transfer_pausable", int, lambda v: v == 0, _yes_no, "Transfers pausable"),
    SecurityFlag("slippage_modifiable", int, lambda v: v == 0, _yes_no, "Modifiable tax"),
    SecurityFlag("trading_cooldown", int, lambda v: v == 0, _yes_no, "Trading cooldown"),
]


def format_security_flags(security: Dict[str, Any]) -> List[str]:
    lines = []
    for flag in SECURITY_FLAGS:
        raw = security.get(flag.field)
        if raw is None:
            continue
        try:
            value = flag.parser(raw)
        except (TypeError, ValueError):
            continue
        icon = "✅" if flag.is_positive(value) else "❌"
        lines.append(f"{icon} {_esc(flag.label)}: {_esc(flag.formatter(value))}")
    return lines


# ---------------------------------------------------------------------------
# Audit issues
# ---------------------------------------------------------------------------

def truncate(text: str, limit: int = ISSUE_DESCRIPTION_MAX_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_issue(issue: Dict[str, Any], index: int) -> str:
    title = str(issue.get("title") or f"Issue {index}").strip()
    severity = str(issue.get("severity") or "").strip()
    description = str(issue.get("description") or "").strip()

    icon = SEVERITY_ICONS.get(severity.lower(), "⚠️")
    heading = f"{icon} *{_esc(f'{index}. {title}')}*"
    if severity:
        heading += f" \\({_esc(severity)}\\)"
    if not description:
        return heading
    return f"{heading}\n{_esc(truncate(description))}"


def text_length(text: str) -> int:
    """Length as Telegram counts it (UTF-16 code units)."""
    return len(text.encode("utf-16-le")) // 2


def _more_issues_line(count: int) -> str:
    return _esc(f"…and {count} more issue(s)")


def format_audit_section(audit: Optional[Dict[str, Any]], max_length: int = MessageLimit.MAX_TEXT_LENGTH) -> str:
    """
    Audit part of the report; None means the audit is still being generated.

    Issue blocks that would push the section past `max_length` are dropped
    and replaced by a single "…and N more" line.
    """
    header = "🔍 *Audit*"
    if audit is None:
        return f"{header}\n{WAITING_GENERATION_AUDIT_MESSAGE}"
    issues = audit.get("issues") or []
    if not issues:
        return f"{header}\n✅ No issues found"
    blocks = [format_issue(issue, n) for n, issue in enumerate(issues, 1)]
    text = f"{header}\n{_esc(f'{len(issues)} issue(s) found')}"
    for shown, block in enumerate(blocks):
        left_after = len(blocks) - shown - 1
        candidate = f"{text}\n\n{block}"
        reserve = text_length(_more_issues_line(left_after)) + 2 if left_after else 0
        if text_length(candidate) + reserve > max_length:
            return f"{text}\n\n{_more_issues_line(len(blocks) - shown)}"
        text = candidate
    return text


def replace_waiting_with_fallback(report: str) -> str:
    return report.replace(WAITING_GENERATION_AUDIT_MESSAGE, AUDIT_FALLBACK_MESSAGE)


# ---------------------------------------------------------------------------
# Full report
# ---------------------------------------------------------------------------

def format_token_statistics(statistics: TokenStatistics, audit: Optional[Dict[str, Any]] = None) -> str:
    """
    Render the full report: header, market data, security flags and the
    audit section (waiting line when `audit` is None).
    """
    symbol = f" \\({_esc('$' + statistics.symbol)}\\)" if statistics.symbol else ""
    address = escape_markdown(statistics.contract_address, version=2, entity_type="code")
    header = f"*{_esc(statistics.name)}*{symbol}\n`{address}`"

    market = []
    if statistics.price_usd is not None:
        market.append(f"💰 Price: {_esc(format_usd(statistics.price_usd))}")
    if statistics.market_cap is not None:
        market.append(f"🏦 Market cap: {_esc(format_usd(statistics.market_cap))}")
    if statistics.liquidity_usd is not None:
        market.append(f"💧 Liquidity: {_esc(format_usd(statistics.liquidity_usd))}")
    if statistics.volume_24h is not None:
        market.append(f"📈 24h volume: {_esc(format_usd(statistics.volume_24h))}")
    if statistics.price_change_24h is not None:
        market.append(f"📉 24h change: {_esc(format_percentage(statistics.price_change_24h))}")
    if statistics.holder_count is not None:
        market.append(f"👥 Holders: {_esc(format_count(statistics.holder_count))}")
    if statistics.pair_url:
        link = escape_markdown(statistics.pair_url, version=2, entity_type="text_link")
        market.append(f"📊 [DexScreener]({link})")

    security_lines = format_security_flags(statistics.security)
    security = "🔒 *Security*\n" + ("\n".join(security_lines) if security_lines else "No security data")

    base = "\n\n".join(s for s in [header, "\n".join(market), security] if s)
    budget = MessageLimit.MAX_TEXT_LENGTH - text_length(base) - 2
    return f"{base}\n\n{format_audit_section(audit, max_length=budget)}"
