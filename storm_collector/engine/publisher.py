"""Publisher SPI and implementations."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from aiokafka import AIOKafkaProducer
from aiokafka.errors import (
    AuthenticationFailedError,
    ClusterAuthorizationFailedError,
    KafkaError,
    SaslAuthenticationFailed,
    TopicAuthorizationFailedError,
    UnsupportedSaslMechanismError,
)

from ..config import KafkaConfig, ReportType
from ..errors import FatalAuthFailure, PublishFailed

DEFAULT_HEADER_KEY = "reportType"

# Broker responses that mean the credentials or ACLs are wrong
AUTH_ERRORS = (
    AuthenticationFailedError,
    ClusterAuthorizationFailedError,
    SaslAuthenticationFailed,
    TopicAuthorizationFailedError,
    UnsupportedSaslMechanismError,
)


class BasePublisher(ABC):
    """Uniform contract for forwarding one report line downstream."""

    async def start(self) -> None:
        """Open the underlying transport."""

    @abstractmethod
    async def publish(self, line: bytes, category: ReportType) -> None:
        """Send ``line`` tagged with ``category``; raise ``PublishFailed`` on error."""

    @abstractmethod
    async def close(self) -> None:
        """Flush and release underlying resources."""


class KafkaPublisher(BasePublisher):
    """Write each line as one Kafka message with a provenance header.

    The producer is created lazily from ``producer_factory``. A start that
    fails for a transport reason discards that producer, so the next
    ``publish`` builds a fresh one and tries again.
    """

    def __init__(self, config: KafkaConfig, producer_factory: Callable[[], AIOKafkaProducer]) -> None:
        self.config = config
        self.topic = config.topic
        self.header_key = config.header_key
        self.producer_factory = producer_factory
        self.producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        if self.producer is not None:
            return
        producer = self.producer_factory()
        try:
            await producer.start()
        except BaseException as exc:
            await producer.stop()
            if isinstance(exc, AUTH_ERRORS):
                raise FatalAuthFailure("kafka", exc) from exc
            if isinstance(exc, KafkaError):
                raise PublishFailed(exc) from exc
            raise
        self.producer = producer

    async def publish(self, line: bytes, category: ReportType) -> None:
        await self.start()
        try:
            await self.producer.send_and_wait(
                self.topic,
                value=line,
                headers=[(self.header_key, category.value.encode("utf-8"))],
            )
        except AUTH_ERRORS as exc:
            raise FatalAuthFailure("kafka", exc) from exc
        except KafkaError as exc:
            raise PublishFailed(exc) from exc

    async def close(self) -> None:
        producer, self.producer = self.producer, None
        if producer is not None:
            await producer.stop()


class FilePublisher(BasePublisher):
    """Append messages to a JSONL file instead of a broker."""

    def __init__(
        self,
        output_dir: Path,
        topic: str,
        header_key: str = DEFAULT_HEADER_KEY,
        run_tag: str | None = None,
    ) -> None:
        self.output_dir = output_dir
        self.topic = topic
        self.header_key = header_key
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.run_tag = run_tag or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.path = self.output_dir / f"{topic}-{self.run_tag}.jsonl"
        self._file = None

    async def start(self) -> None:
        if self._file is None:
            self._file = self.path.open("a", encoding="utf-8")

    async def publish(self, line: bytes, category: ReportType) -> None:
        if self._file is None:
            await self.start()
        record = {
            "topic": self.topic,
            "value": line.decode("utf-8", errors="replace"),
            "headers": {self.header_key: category.value},
        }
        try:
            json.dump(record, self._file, ensure_ascii=False)
            self._file.write("\n")
            self._file.flush()
        except OSError as exc:
            raise PublishFailed(exc) from exc

    async def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


__all__ = ["AUTH_ERRORS", "BasePublisher", "DEFAULT_HEADER_KEY", "FilePublisher", "KafkaPublisher"]
