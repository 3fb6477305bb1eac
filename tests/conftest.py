"""Shared fixtures: sample configs, stub collaborators and a mock HTTP feed."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest

from storm_collector import logging_conf
from storm_collector.config import (
    CollectorConfig,
    ConfigLocator,
    ConfigRepository,
    EnvSecretSource,
    ReportType,
)
from storm_collector.engine import BasePublisher, Fetcher, InMemoryDeduplicationStore

HAIL_URL = "https://reports.test/today_filtered_hail.csv"
WIND_URL = "https://reports.test/today_filtered_wind.csv"
TORNADO_URL = "https://reports.test/today_filtered_torn.csv"


class StubPublisher(BasePublisher):
    """Record every publish; optionally raise a queued error per call."""

    def __init__(self) -> None:
        self.sent: list[tuple[bytes, ReportType]] = []
        self.errors: list[BaseException] = []
        self.fail_always: BaseException | None = None
        self.started = False
        self.closed = False

    async def start(self) -> None:
        self.started = True

    async def publish(self, line: bytes, category: ReportType) -> None:
        if self.fail_always is not None:
            raise self.fail_always
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append((line, category))

    async def close(self) -> None:
        self.closed = True

    def lines(self) -> list[bytes]:
        return [line for line, _ in self.sent]


class FeedServer:
    """Route table for ``httpx.MockTransport``; values can change between cycles."""

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.requests: list[httpx.Request] = []

    def set(self, url: str, body: bytes | str | None = None, status: int = 200, error: Exception | None = None) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[url] = (status, body or b"", error)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url not in self.routes:
            return httpx.Response(404)
        status, body, error = self.routes[url]
        if error is not None:
            raise error
        return httpx.Response(status, content=body)

    def fetcher(self, **kwargs: Any) -> Fetcher:
        return Fetcher(transport=httpx.MockTransport(self.handler), **kwargs)


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_dir = tmp_path / "logs"
    (log_dir / "sources").mkdir(parents=True)
    monkeypatch.setattr(logging_conf, "_LOG_DIR", log_dir)
    monkeypatch.setattr(logging_conf, "_LOGGING_INITIALISED", True)
    return log_dir


@pytest.fixture
def sample_config() -> Callable[..., CollectorConfig]:
    def _builder(**overrides: Any) -> CollectorConfig:
        base: dict[str, Any] = {
            "sources": [
                {"category": "Hail", "url": HAIL_URL},
                {"category": "Wind", "url": WIND_URL},
            ],
            "schedule": {"type": "interval", "value": "5m"},
            "deduplication": {"backend": "memory"},
            "publisher": {"backend": "file"},
        }
        base.update(overrides)
        return CollectorConfig.model_validate(base)

    return _builder


@pytest.fixture
def feed() -> FeedServer:
    return FeedServer()


@pytest.fixture
def publisher() -> StubPublisher:
    return StubPublisher()


@pytest.fixture
def store() -> InMemoryDeduplicationStore:
    return InMemoryDeduplicationStore()


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("STORM_COLLECTOR_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator, secrets=EnvSecretSource(environ={}))
    yield repository
