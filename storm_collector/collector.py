"""Report collector wiring together fetching, normalising, dedup and publishing."""

from __future__ import annotations

import hashlib
from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Iterable

import structlog

from .config import ReportSource, ReportType
from .engine import BasePublisher, DeduplicationStore, Fetcher, LineNormalizer, dedup_key
from .errors import DedupStoreUnavailable, FetchFailed, NonOkStatus, PublishFailed

SKIPPED = "skipped"
PUBLISHED = "published"
FAILED = "failed"


@dataclass(slots=True)
class CollectionOutcome:
    """Per-source tally for one cycle."""

    category: ReportType
    total: int = 0
    skipped: int = 0
    published: int = 0
    failed: int = 0
    fetched: bool = True
    error: str | None = None

    def record(self, status: str) -> None:
        self.total += 1
        if status == SKIPPED:
            self.skipped += 1
        elif status == PUBLISHED:
            self.published += 1
        else:
            self.failed += 1

    def summary(self) -> dict:
        data = asdict(self)
        data["category"] = self.category.value
        return data


class RetryBuffer:
    """Bounded FIFO of lines whose publish failed; oldest entries drop first."""

    def __init__(self, maxlen: int) -> None:
        self.maxlen = maxlen
        self._items: deque[tuple[ReportType, bytes]] = deque()

    def push(self, category: ReportType, line: bytes) -> tuple[ReportType, bytes] | None:
        """Queue an entry and return whatever was evicted to make room."""

        if self.maxlen == 0:
            return (category, line)
        evicted = None
        if len(self._items) >= self.maxlen:
            evicted = self._items.popleft()
        self._items.append((category, line))
        return evicted

    def drain(self) -> list[tuple[ReportType, bytes]]:
        items = list(self._items)
        self._items.clear()
        return items

    def __len__(self) -> int:
        return len(self._items)


def _text(line: bytes) -> str:
    return line.decode("utf-8", errors="replace")


class ReportCollector:
    """Run fetch → normalize → dedup → publish for every configured source."""

    def __init__(
        self,
        sources: Iterable[ReportSource],
        fetcher: Fetcher,
        store: DeduplicationStore,
        publisher: BasePublisher,
        normalizer: LineNormalizer | None = None,
        *,
        key_prefix: str = "",
        retry_buffer_size: int = 1000,
        skip_unchanged_bodies: bool = False,
        logger: structlog.BoundLogger | None = None,
        log_factory: Callable[[str], structlog.BoundLogger] | None = None,
    ) -> None:
        self.sources = tuple(sources)
        self.fetcher = fetcher
        self.store = store
        self.publisher = publisher
        self.normalizer = normalizer or LineNormalizer()
        self.key_prefix = key_prefix
        self.skip_unchanged_bodies = skip_unchanged_bodies
        self.logger = logger or structlog.get_logger("storm_collector").bind(component="collector")
        self._log_factory = log_factory
        self._retry = RetryBuffer(retry_buffer_size)
        # one slot per category, only set after a cycle with no failed lines
        self._last_digest: dict[ReportType, str] = {}

    @property
    def pending_retries(self) -> int:
        return len(self._retry)

    async def collect_and_publish(self) -> list[CollectionOutcome]:
        """Run one cycle across all sources.

        Fetch and per-line failures are logged and counted; they never abort
        the cycle. ``FatalAuthFailure`` propagates to the caller.
        """

        await self._retry_undelivered()
        outcomes: list[CollectionOutcome] = []
        for source in self.sources:
            outcomes.append(await self._collect_source(source))
        return outcomes

    # ------------------------------------------------------------------
    async def _collect_source(self, source: ReportSource) -> CollectionOutcome:
        log = self._source_log(source.category)
        outcome = CollectionOutcome(category=source.category)
        try:
            body = await self.fetcher.fetch(source.url)
        except (FetchFailed, NonOkStatus) as exc:
            outcome.fetched = False
            outcome.error = str(exc)
            log.warning("fetch_failed", url=source.url, error=str(exc))
            return outcome

        lines = self.normalizer.normalize(body)
        digest = hashlib.sha256(body).hexdigest()
        if self.skip_unchanged_bodies and self._last_digest.get(source.category) == digest:
            outcome.total = outcome.skipped = len(lines)
            log.info("report_unchanged", **outcome.summary())
            return outcome

        for line in lines:
            outcome.record(await self._process_line(source.category, line, log))

        if outcome.failed:
            self._last_digest.pop(source.category, None)
        else:
            self._last_digest[source.category] = digest
        log.info("report_processed", **outcome.summary())
        return outcome

    async def _process_line(
        self, category: ReportType, line: bytes, log: structlog.BoundLogger
    ) -> str:
        key = dedup_key(category, line, self.key_prefix)
        try:
            seen = await self.store.exists(key)
        except DedupStoreUnavailable as exc:
            log.warning("dedup_lookup_failed", error=str(exc), line=_text(line))
            return FAILED
        if seen:
            return SKIPPED

        try:
            await self.store.mark(key)
        except DedupStoreUnavailable as exc:
            log.warning("dedup_mark_failed", error=str(exc), line=_text(line))
        return await self._deliver(category, line, log)

    async def _deliver(self, category: ReportType, line: bytes, log: structlog.BoundLogger) -> str:
        try:
            await self.publisher.publish(line, category)
        except PublishFailed as exc:
            log.warning("publish_failed", error=str(exc), line=_text(line))
            self._buffer(category, line)
            return FAILED
        log.debug("message_write_successful", line=_text(line))
        return PUBLISHED

    def _buffer(self, category: ReportType, line: bytes) -> None:
        dropped = self._retry.push(category, line)
        if dropped is not None:
            self.logger.warning(
                "publish_dropped",
                category=dropped[0].value,
                line=_text(dropped[1]),
                buffer_size=self._retry.maxlen,
            )

    async def _retry_undelivered(self) -> None:
        pending = self._retry.drain()
        if not pending:
            return
        delivered = 0
        position = 0
        try:
            for position, (category, line) in enumerate(pending):
                try:
                    await self.publisher.publish(line, category)
                except PublishFailed as exc:
                    self.logger.debug("retry_publish_failed", category=category.value, error=str(exc))
                    self._buffer(category, line)
                    continue
                delivered += 1
            position = len(pending)
        finally:
            # the interrupted entry and everything after it stay queued
            for category, line in pending[position:]:
                self._buffer(category, line)
            if position < len(pending):
                self.logger.warning("retry_interrupted", requeued=len(pending) - position)
        self.logger.info(
            "retry_buffer_drained",
            attempted=len(pending),
            delivered=delivered,
            remaining=len(self._retry),
        )

    def _source_log(self, category: ReportType) -> structlog.BoundLogger:
        if self._log_factory is not None:
            return self._log_factory(category.value)
        return self.logger.bind(category=category.value)


__all__ = ["CollectionOutcome", "ReportCollector", "RetryBuffer"]
