"""Token statistics: GoPlus token security merged with DexScreener market data."""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional

from config import CHAIN_ID, DEXSCREENER_API_URL, GOPLUS_API_URL
from auditbot.models import TokenStatistics
from auditbot.services import http

logger = logging.getLogger(__name__)


async def fetch_goplus_security(contract_address: str) -> Optional[Dict[str, Any]]:
    data = await http.get_json(
        f"{GOPLUS_API_URL}/token_security/{CHAIN_ID}",
        params={"contract_addresses": contract_address},
    )
    if not isinstance(data, dict):
        return None
    result = data.get("result") or {}
    # GoPlus keys the result by the lower-cased address
    record = result.get(contract_address.lower())
    return record if isinstance(record, dict) else None


async def fetch_dexscreener_pair(contract_address: str) -> Optional[Dict[str, Any]]:
    """Return the pair with the highest USD liquidity for this token, if any."""
    data = await http.get_json(f"{DEXSCREENER_API_URL}/dex/tokens/{contract_address}")
    if not isinstance(data, dict):
        return None
    pairs: List[Dict[str, Any]] = [p for p in (data.get("pairs") or []) if isinstance(p, dict)]
    if not pairs:
        return None
    return max(pairs, key=lambda p: _to_float((p.get("liquidity") or {}).get("usd")) or 0.0)


async def fetch_token_statistics(contract_address: str) -> Optional[TokenStatistics]:
    """
    Fetch security and market data for a token.
    Returns None when the security record (or the token name in it) is missing;
    market data is optional.
    """
    security, pair = await asyncio.gather(
        fetch_goplus_security(contract_address),
        fetch_dexscreener_pair(contract_address),
    )
    if not security or not security.get("token_name"):
        logger.info(f"No security data for {contract_address}")
        return None
    return build_token_statistics(contract_address, security, pair)


def build_token_statistics(
    contract_address: str,
    security: Dict[str, Any],
    pair: Optional[Dict[str, Any]],
) -> TokenStatistics:
    pair = pair or {}
    market_cap = _to_float(pair.get("marketCap"))
    if market_cap is None:
        market_cap = _to_float(pair.get("fdv"))
    holder_count = _to_float(security.get("holder_count"))
    return TokenStatistics(
        contract_address=contract_address,
        name=security.get("token_name", ""),
        symbol=security.get("token_symbol", ""),
        security=security,
        price_usd=_to_float(pair.get("priceUsd")),
        market_cap=market_cap,
        liquidity_usd=_to_float((pair.get("liquidity") or {}).get("usd")),
        volume_24h=_to_float((pair.get("volume") or {}).get("h24")),
        price_change_24h=_to_float((pair.get("priceChange") or {}).get("h24")),
        holder_count=int(holder_count) if holder_count is not None else None,
        pair_url=pair.get("url"),
    )


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    # "NaN" and "inf" parse as floats but cannot be rendered
    return result if math.isfinite(result) else None
