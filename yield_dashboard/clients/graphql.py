from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from yield_dashboard.errors import FetchError
from yield_dashboard.http import HttpClient

logger = logging.getLogger(__name__)


def _source(url: str) -> str:
    # gateway URLs embed the API key in the path
    return f"graphql:{httpx.URL(url).host}"


async def graphql_query(http: HttpClient, url: str, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """POST a query and return its `data` object.

    Subgraphs answer 200 with an `errors` list for bad queries or indexing
    problems; those are raised as FetchError like any transport failure.
    """
    resp = await http.post(url, json={"query": query, "variables": variables or {}})
    body = resp.json()
    errors = body.get("errors")
    if errors:
        messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        logger.warning(f"GraphQL errors from {_source(url)}: {messages}")
        raise FetchError(_source(url), messages)
    data = body.get("data")
    if not isinstance(data, dict):
        raise FetchError(_source(url), "response carries no data")
    return data
