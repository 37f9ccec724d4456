from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient

logger = logging.getLogger(__name__)


def build_payload(level: str, message: str, labels: Optional[Dict[str, str]] = None, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    settings = get_settings()
    ts_ns = str(int(time.time() * 1_000_000_000))
    stream = labels or {"service": "avax-yield-dashboard", "env": settings.ENV, "level": level}
    return {
        "streams": [
            {
                "stream": stream,
                "values": [
                    [ts_ns, json.dumps({"message": message, **(extra or {})})]
                ],
            }
        ]
    }


async def loki_log(http: HttpClient, level: str, message: str, labels: Optional[Dict[str, str]] = None, extra: Optional[Dict[str, Any]] = None) -> None:
    """Push one log line to Loki. Best effort: failures are logged at debug and dropped."""
    url = f"{get_settings().LOKI_URL.rstrip('/')}/loki/api/v1/push"
    try:
        await http.request("POST", url, json=build_payload(level, message, labels, extra))
    except Exception as e:
        logger.debug(f"Loki push failed: {e}")
