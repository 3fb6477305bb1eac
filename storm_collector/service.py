"""Runtime wiring: build stores, publishers and the scheduler from config."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import signal
from pathlib import Path

import structlog

from .collector import CollectionOutcome, ReportCollector
from .config import CollectorConfig, ConfigLocator
from .engine import (
    BasePublisher,
    DeduplicationStore,
    Fetcher,
    FilePublisher,
    InMemoryDeduplicationStore,
    KafkaPublisher,
    RedisDeduplicationStore,
    SQLiteDeduplicationStore,
)
from .errors import PublishFailed
from .infra import SQLiteManager, build_kafka_producer, build_redis_client
from .logging_conf import configure_logging, source_logger
from .scheduler import PollingScheduler, Ticker, TriggerTicker


class CollectorService:
    """Async context manager owning every long-lived connection.

    Entering the context opens the dedup store, the publisher and the HTTP
    client; leaving it closes them in reverse order.
    """

    def __init__(
        self,
        config: CollectorConfig,
        locator: ConfigLocator,
        *,
        dry_run: bool = False,
        storage: SQLiteManager | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.locator = locator
        self.dry_run = dry_run
        self.storage = storage or SQLiteManager()
        self.logger = logger or configure_logging().bind(component="service")
        self.store: DeduplicationStore | None = None
        self.publisher: BasePublisher | None = None
        self.fetcher: Fetcher | None = None
        self.collector: ReportCollector | None = None

    # ------------------------------------------------------------------
    def build_store(self) -> DeduplicationStore:
        dedup = self.config.deduplication
        backend = "memory" if self.dry_run else dedup.backend
        if backend == "redis":
            return RedisDeduplicationStore(build_redis_client(self.config.redis), dedup.ttl_seconds)
        if backend == "sqlite":
            path = dedup.resolved_store_path(self.locator.project_root)
            return SQLiteDeduplicationStore(self.storage, path, dedup.ttl_seconds)
        return InMemoryDeduplicationStore(dedup.ttl_seconds)

    def build_publisher(self) -> BasePublisher:
        kafka = self.config.kafka
        publisher = self.config.publisher
        if self.dry_run or publisher.backend == "file":
            output_dir = self._output_dir(publisher.output_dir)
            return FilePublisher(output_dir, kafka.topic, header_key=kafka.header_key)
        return KafkaPublisher(kafka, functools.partial(build_kafka_producer, kafka))

    def _output_dir(self, configured: Path) -> Path:
        if not configured.is_absolute():
            return self.locator.project_root / configured
        return configured

    # ------------------------------------------------------------------
    async def __aenter__(self) -> "CollectorService":
        self.store = self.build_store()
        self.publisher = self.build_publisher()
        try:
            await self.publisher.start()
        except PublishFailed as exc:
            # publish() retries the connection on the next line
            self.logger.warning("publisher_unavailable", error=str(exc))
        except BaseException:
            await self.publisher.close()
            await self.store.close()
            raise
        self.fetcher = Fetcher(self.config.fetch)
        self.collector = ReportCollector(
            self.config.sources,
            self.fetcher,
            self.store,
            self.publisher,
            key_prefix=self.config.deduplication.key_prefix,
            retry_buffer_size=self.config.retry_buffer_size,
            skip_unchanged_bodies=self.config.skip_unchanged_bodies,
            log_factory=source_logger,
        )
        self.logger.info(
            "service_started",
            sources=[source.category.value for source in self.config.sources],
            dedup_backend="memory" if self.dry_run else self.config.deduplication.backend,
            publisher=type(self.publisher).__name__,
            dry_run=self.dry_run,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.collector is not None and self.collector.pending_retries:
            self.logger.warning("undelivered_on_shutdown", count=self.collector.pending_retries)
        if self.fetcher is not None:
            await self.fetcher.close()
        if self.publisher is not None:
            await self.publisher.close()
        if self.store is not None:
            await self.store.close()
        self.storage.close_all()
        self.logger.info("service_stopped")

    # ------------------------------------------------------------------
    async def collect_once(self) -> list[CollectionOutcome]:
        if self.collector is None:
            raise RuntimeError("service not started")
        return await self.collector.collect_and_publish()

    async def run_forever(
        self,
        stop_event: asyncio.Event | None = None,
        ticker: Ticker | None = None,
    ) -> PollingScheduler:
        """Poll until ``stop_event`` is set or a fatal auth failure occurs."""

        if self.collector is None:
            raise RuntimeError("service not started")
        stop_event = stop_event or asyncio.Event()
        ticker = ticker or TriggerTicker.from_schedule(self.config.schedule)
        scheduler = PollingScheduler(self.collector, ticker)
        self.logger.info("schedule_configured", schedule=self.config.schedule.describe())
        install_signal_handlers(stop_event)
        await scheduler.run(stop_event)
        return scheduler


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM where the loop supports it."""

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, stop_event.set)


__all__ = ["CollectorService", "install_signal_handlers"]
