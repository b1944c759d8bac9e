"""Cold-start bootstrap of the window from the time-series store."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence

from models.records import Sample
from services.errors import HistoryUnavailableError, MalformedMessageError
from services.normalizer import SampleNormalizer
from services.publisher import SnapshotPublisher
from services.window import SlidingWindowStore

logger = logging.getLogger(__name__)


class HistoryStore(Protocol):
    def query_recent(self, range_start: str = "-6h", limit: int = 500) -> Sequence[Mapping[str, Any]]: ...


@dataclass(frozen=True)
class HistoryResult:
    """Samples returned by one history query, newest first."""

    samples: tuple[Sample, ...]

    @property
    def latest(self) -> Optional[Sample]:
        return self.samples[0] if self.samples else None

    def chronological(self) -> tuple[Sample, ...]:
        return tuple(reversed(self.samples))


class HistoryLoader:
    """Runs the bounded history query and seeds the window exactly once.

    Seeding is all-or-nothing: every row has to normalize before
    :meth:`SlidingWindowStore.seed` is called, otherwise the window keeps
    its prior contents and :class:`HistoryUnavailableError` is raised.
    """

    def __init__(
        self,
        store: HistoryStore,
        window: SlidingWindowStore,
        normalizer: Optional[SampleNormalizer] = None,
        publisher: Optional[SnapshotPublisher] = None,
        range_start: str = "-6h",
        limit: int = 500,
    ) -> None:
        self.store = store
        self.window = window
        self.normalizer = normalizer or SampleNormalizer()
        self.publisher = publisher
        self.range_start = range_start
        self.limit = limit

    def fetch(self) -> HistoryResult:
        """Query the store without touching the window."""
        try:
            rows = self.store.query_recent(range_start=self.range_start, limit=self.limit)
        except HistoryUnavailableError:
            raise
        except Exception as exc:
            raise HistoryUnavailableError(f"History query failed: {exc}") from exc

        samples: list[Sample] = []
        for index, row in enumerate(rows[: self.limit]):
            try:
                samples.append(self.normalizer.from_row(row))
            except MalformedMessageError as exc:
                raise HistoryUnavailableError(f"History row {index} is malformed: {exc}") from exc
        return HistoryResult(samples=tuple(samples))

    def load(self) -> tuple[Sample, ...]:
        start_time = time.perf_counter()
        result = self.fetch()
        chronological = result.chronological()
        self.window.seed(chronological)
        if self.publisher is not None:
            self.publisher.publish(history_loaded=True)
        logger.info(
            "Seeded window from history",
            extra={
                "row_count": len(chronological),
                "window_size": len(self.window),
                "elapsed_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return chronological
