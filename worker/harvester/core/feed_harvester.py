"""Incremental harvest of a single query's results feed.

The feed grows lazily as it is scrolled and gives no reliable completion
signal, so a harvest stops on whichever comes first:

- the feed renders its end-of-list marker,
- `no_new_results_threshold` consecutive iterations surface no unseen item,
- `max_scroll_attempts` iterations have run,
- the per-query wall-clock budget is spent.

Whatever was emitted before the stop is final for that query.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence, Set

from harvester.core.config import Settings, get_settings
from harvester.core.dedup import DedupIndex, dedup_key
from harvester.core.models import (
    FILTER_MODE_ANNOTATE,
    FILTER_MODE_GATE,
    STATUS_EXTRACTED,
    AcceptedRecord,
    CandidateRecord,
    Query,
)
from harvester.core.sink import Sink
from harvester.etl.filters import FilterPipeline

logger = logging.getLogger(__name__)

STOP_END_OF_LIST = "end_of_list"
STOP_STALLED = "stalled"
STOP_ITERATION_CAP = "iteration_cap"
STOP_TIMEOUT = "timeout"
STOP_FEED_NOT_LOADED = "feed_not_loaded"
STOP_FEED_ERROR = "feed_error"


class FeedLoadError(RuntimeError):
    """Raised by a feed source when a query's results never become available."""


class SinkWriteError(RuntimeError):
    """Raised when an accepted record cannot be written; aborts the run."""


class FeedSource(Protocol):
    def open(self, query: Query) -> None: ...

    def reached_end(self) -> bool: ...

    def items(self) -> Sequence[Any]: ...

    def advance(self) -> bool: ...

    def release(self) -> None: ...


class Extractor(Protocol):
    def extract(self, item: Any) -> Optional[CandidateRecord]: ...


class Enricher(Protocol):
    def enrich(self, website: Optional[str]) -> Optional[str]: ...


class HarvestState(enum.Enum):
    INIT = "init"
    LOADING = "loading"
    ACTIVE = "active"
    DRAINED = "drained"


@dataclass
class HarvestResult:
    query: Query
    places_extracted: int = 0
    items_discovered: int = 0
    duplicates: int = 0
    filtered_out: int = 0
    skipped_items: int = 0
    iterations: int = 0
    stop_reason: Optional[str] = None


class FeedHarvester:
    """Scroll/extract loop for one query. Instances are single-use."""

    def __init__(
        self,
        feed: FeedSource,
        extractor: Extractor,
        dedup_index: DedupIndex,
        pipeline: FilterPipeline,
        sink: Sink,
        *,
        enricher: Optional[Enricher] = None,
        filter_mode: str = FILTER_MODE_ANNOTATE,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.feed = feed
        self.extractor = extractor
        self.dedup_index = dedup_index
        self.pipeline = pipeline
        self.sink = sink
        self.enricher = enricher
        self.filter_mode = filter_mode
        self.settings = settings or get_settings()
        self._clock = clock

        self.state = HarvestState.INIT
        self.stall_count = 0
        self.iteration_count = 0
        self.result: Optional[HarvestResult] = None
        self._processed: Set[int] = set()
        self._deadline = 0.0

    def run(self, query: Query) -> HarvestResult:
        if self.state is not HarvestState.INIT:
            raise RuntimeError("FeedHarvester instances are single-use")

        self.result = HarvestResult(query=query)
        self._deadline = self._clock() + self.settings.query_timeout_seconds
        try:
            self._load(query)
            while self.state is HarvestState.ACTIVE:
                self._iterate(query)
        except SinkWriteError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Feed failed, keeping %s records from this query: %s", self.result.places_extracted, exc)
            self._drain(STOP_FEED_ERROR)
        finally:
            self.feed.release()
            self._processed.clear()
        return self.result

    def _load(self, query: Query) -> None:
        self.state = HarvestState.LOADING
        logger.info('Loading results for "%s" in "%s"', query.search_term, query.location)
        try:
            self.feed.open(query)
        except FeedLoadError as exc:
            logger.error("Failed to load results, skipping this query: %s", exc)
            self._drain(STOP_FEED_NOT_LOADED)
            return
        self.state = HarvestState.ACTIVE

    def _drain(self, reason: str) -> None:
        self.state = HarvestState.DRAINED
        self.result.stop_reason = reason
        logger.info("Harvest drained (%s) after %s iterations", reason, self.iteration_count)

    def _out_of_time(self) -> bool:
        return self._clock() >= self._deadline

    def _iterate(self, query: Query) -> None:
        if self._out_of_time():
            self._drain(STOP_TIMEOUT)
            return

        self.iteration_count += 1
        self.result.iterations = self.iteration_count

        if self.feed.reached_end():
            logger.info("Reached end of results")
            self._drain(STOP_END_OF_LIST)
            return

        items = self.feed.items()
        logger.info("Found %s result cards (scroll attempt %s)", len(items), self.iteration_count)

        new_items = 0
        for position, item in enumerate(items):
            if position in self._processed:
                continue
            self._processed.add(position)
            new_items += 1
            self.result.items_discovered += 1
            self._process(item, query)
            if self._out_of_time():
                self._drain(STOP_TIMEOUT)
                return

        if new_items == 0:
            self.stall_count += 1
            logger.info("No new results (%s/%s)", self.stall_count, self.settings.no_new_results_threshold)
            if self.stall_count >= self.settings.no_new_results_threshold:
                self._drain(STOP_STALLED)
                return
        else:
            self.stall_count = 0

        if not self.feed.advance():
            logger.info("Cannot scroll further, checking for more results...")
            time.sleep(self.settings.scroll_delay_ms / 1000)

        if self.iteration_count >= self.settings.max_scroll_attempts:
            self._drain(STOP_ITERATION_CAP)

    def _process(self, item: Any, query: Query) -> None:
        record = self.extractor.extract(item)
        if record is None:
            self.result.skipped_items += 1
            return

        status = STATUS_EXTRACTED
        if self.filter_mode == FILTER_MODE_GATE:
            status = self.pipeline.evaluate(record)
            if status != STATUS_EXTRACTED:
                self.result.filtered_out += 1
                logger.info("Skipping (%s): %s", status, record.business_name)
                return

        if not self.dedup_index.claim(dedup_key(record)):
            self.result.duplicates += 1
            logger.info("Duplicate: %s", record.business_name)
            return

        if self.enricher is not None and record.website and not record.email:
            record.email = self.enricher.enrich(record.website)

        if self.filter_mode == FILTER_MODE_ANNOTATE:
            status = self.pipeline.evaluate(record)

        try:
            self.sink.append(AcceptedRecord(record=record, query=query, filter_status=status))
        except Exception as exc:
            raise SinkWriteError(f"could not write {record.business_name!r}: {exc}") from exc
        self.result.places_extracted += 1
        logger.info(
            "Accepted #%s for query %s: %s [%s] | %s | %s | %s",
            self.result.places_extracted,
            query.index,
            record.business_name,
            status,
            record.phone or "No phone",
            "Has website" if record.website else "No website",
            record.rating if record.rating is not None else "N/A",
        )
