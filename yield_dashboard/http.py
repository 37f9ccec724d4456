from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

USER_AGENT = "avax-yield-dashboard/1.0"


def is_transient(exc: BaseException) -> bool:
    """Transport failures, 429 and 5xx are retried. Other 4xx answers are final."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


_retrying = retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(is_transient),
    before_sleep=before_sleep_log(logger, logging.WARNING),
)


class HttpClient:
    """One pooled AsyncClient shared by every upstream (REST, subgraphs, JSON-RPC)."""

    def __init__(self, timeout: float = 15.0):
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Single attempt, no retry. For best-effort side channels such as log shipping."""
        resp = await self._client.request(method, url, **kwargs)
        resp.raise_for_status()
        return resp

    @_retrying
    async def get(self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        logger.debug(f"GET {url} params={params}")
        return await self.request("GET", url, params=params, headers=headers)

    @_retrying
    async def post(self, url: str, json: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        logger.debug(f"POST {url}")
        return await self.request("POST", url, json=json, headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()
