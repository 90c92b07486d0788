"""LuckBlock API: audit jobs and wallet registration."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from config import LUCKBLOCK_API_URL
from auditbot.services import http

logger = logging.getLogger(__name__)


class AuditPayloadError(Exception):
    pass


async def fetch_audit_data(contract_address: str) -> Optional[Dict[str, Any]]:
    """Returns {"status": ..., "data": "<json string>"} or None."""
    data = await http.get_json(f"{LUCKBLOCK_API_URL}/audit/{contract_address}/json")
    return data if isinstance(data, dict) else None


async def trigger_audit(contract_address: str) -> bool:
    logger.info(f"Triggering audit for {contract_address}")
    return await http.post(f"{LUCKBLOCK_API_URL}/audit/{contract_address}")


async def fetch_audit_status(contract_address: str) -> Optional[Dict[str, Any]]:
    """Returns {"status": ..., "error": ...} or None when the check itself failed."""
    data = await http.get_json(f"{LUCKBLOCK_API_URL}/audit/{contract_address}/status")
    return data if isinstance(data, dict) else None


async def register_wallet(address: str) -> bool:
    ok = await http.post(f"{LUCKBLOCK_API_URL}/register/{address}")
    if ok:
        logger.info(f"Registered wallet {address}")
    return ok


def audit_is_ready(audit_data: Optional[Dict[str, Any]]) -> bool:
    return bool(audit_data) and audit_data.get("status") == "success"


def parse_audit_payload(raw: Any) -> Dict[str, Any]:
    """
    Parse the `data` field of an audit response into {"issues": [...]}.

    Accepts a JSON string or an already decoded object, and either an object
    with an "issues" list or a bare list of issues. Non-dict issues are dropped.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise AuditPayloadError(f"Audit payload is not valid JSON: {e}") from e
    if isinstance(raw, list):
        issues = raw
    elif isinstance(raw, dict):
        issues = raw.get("issues", [])
    else:
        raise AuditPayloadError(f"Unexpected audit payload type: {type(raw).__name__}")
    if not isinstance(issues, list):
        raise AuditPayloadError("Audit payload issues is not a list")
    parsed: List[Dict[str, Any]] = [i for i in issues if isinstance(i, dict)]
    return {"issues": parsed}
