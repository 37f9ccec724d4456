from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Generic, List, Optional, TypeVar

from yield_dashboard.errors import FetchError
from yield_dashboard.models import ProtocolSnapshot
from yield_dashboard.services.validator import DataSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Confidence assigned per source type
CONFIDENCE_ONCHAIN = 0.95
CONFIDENCE_OFFICIAL_API = 0.95
CONFIDENCE_SUBGRAPH = 0.9
CONFIDENCE_DEFILLAMA = 0.8
CONFIDENCE_DEFILLAMA_TVL = 0.85
CONFIDENCE_RATE_HISTORY = 0.9
CONFIDENCE_PRICE_HEURISTIC = 0.75
# fee APR derived from volume rather than reported
CONFIDENCE_ESTIMATE = 0.8
CONFIDENCE_FALLBACK = 0.5


@dataclass
class FetchResult(Generic[T]):
    name: str
    value: Optional[T]
    error: Optional[FetchError] = None
    used_fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


async def read_or_fallback(name: str, aw: Awaitable[T], fallback: Optional[T] = None) -> FetchResult[T]:
    """Await one sub-read. Any failure yields the declared fallback instead of raising."""
    try:
        return FetchResult(name, await aw)
    except Exception as e:
        err = e if isinstance(e, FetchError) else FetchError(name, str(e) or type(e).__name__)
        logger.warning(f"{name} failed, using fallback {fallback!r}: {err}")
        return FetchResult(name, fallback, err, used_fallback=True)


class ProtocolFetcher:
    """Base class for per-protocol fetchers.

    Subclasses set `name`, `slug` and `FALLBACKS` and implement `_collect`,
    which appends positions to the snapshot. Fields that fell back are recorded
    on the snapshot so the same failures always produce the same report.
    """

    name: str = ""
    slug: str = ""
    FALLBACKS: Dict[str, Any] = {}

    async def fetch_data(self) -> ProtocolSnapshot:
        snapshot = ProtocolSnapshot(protocol=self.name, slug=self.slug, fetched_at=time.time())
        await self._collect(snapshot)
        # sub-reads complete in arbitrary order
        snapshot.fallback_fields = sorted(set(snapshot.fallback_fields))
        logger.info(
            f"{self.name}: {len(snapshot.positions)} positions"
            + (f", fallbacks={snapshot.fallback_fields}" if snapshot.fallback_fields else "")
        )
        return snapshot

    async def _collect(self, snapshot: ProtocolSnapshot) -> None:
        raise NotImplementedError

    async def _read(self, snapshot: ProtocolSnapshot, name: str, aw: Awaitable[T]) -> FetchResult[T]:
        result = await read_or_fallback(f"{self.slug}.{name}", aw, self.FALLBACKS.get(name))
        if result.used_fallback and name in self.FALLBACKS:
            snapshot.fallback_fields.append(name)
        return result


def source(source_id: str, value: float, confidence: float, timestamp: float | None = None) -> DataSource:
    return DataSource(source=source_id, value=float(value), confidence=confidence, timestamp=timestamp or time.time())


def sources_used(sources: List[DataSource]) -> List[str]:
    return [s.source for s in sources]
