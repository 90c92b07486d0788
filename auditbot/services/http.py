from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config import REQUEST_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)


def make_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=REQUEST_TIMEOUT, headers={"User-Agent": USER_AGENT})


async def get_json(url: str, params: Optional[Dict[str, str]] = None) -> Optional[Any]:
    """GET url and return the decoded JSON body, or None on any HTTP/decoding failure."""
    try:
        async with make_client() as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPError as e:
        logger.warning(f"GET {url} failed: {e}")
    except ValueError as e:
        logger.warning(f"GET {url} returned invalid JSON: {e}")
    return None


async def post(url: str) -> bool:
    """POST url without a body. Returns True on a 2xx response."""
    try:
        async with make_client() as client:
            response = await client.post(url)
            response.raise_for_status()
            return True
    except httpx.HTTPError as e:
        logger.warning(f"POST {url} failed: {e}")
        return False
