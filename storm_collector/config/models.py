"""Pydantic models describing the collector configuration."""

from __future__ import annotations

import re
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_DURATION_PATTERN = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|[smhd])", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_duration(value: Any) -> timedelta:
    """Parse seconds or a compact duration string such as ``5m`` or ``1h30m``."""

    if isinstance(value, timedelta):
        total = value
    elif isinstance(value, bool):
        raise ValueError("Duration must be a number of seconds or a string like '5m'")
    elif isinstance(value, (int, float)):
        total = timedelta(seconds=float(value))
    elif isinstance(value, str):
        spec = value.strip().lower()
        if not spec:
            raise ValueError("Duration cannot be empty")
        try:
            seconds: float | None = float(spec)
        except ValueError:
            seconds = None
        if seconds is not None:
            total = timedelta(seconds=seconds)
        else:
            total = timedelta()
            index = 0
            for match in _DURATION_PATTERN.finditer(spec):
                if match.start() != index:
                    raise ValueError(f"Unsupported duration format: {value}")
                unit = _DURATION_UNITS[match.group("unit").lower()]
                total += unit * float(match.group("value"))
                index = match.end()
            if index != len(spec):
                raise ValueError(f"Unsupported duration format: {value}")
    else:
        raise ValueError("Duration must be a number of seconds or a string like '5m'")
    if total <= timedelta():
        raise ValueError("Duration must be greater than zero")
    return total


class ReportType(str, Enum):
    """Report categories published by the storm prediction feeds."""

    HAIL = "Hail"
    WIND = "Wind"
    TORNADO = "Tornado"

    @classmethod
    def from_string(cls, value: str) -> "ReportType":
        text = value.strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"unknown report type: {value}")


class ScheduleType(str, Enum):
    """Polling cadence modes."""

    INTERVAL = "interval"
    CRON = "cron"


class ReportSource(BaseModel):
    """One remote report feed."""

    model_config = ConfigDict(frozen=True)

    category: ReportType
    url: str

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, ReportType):
            return ReportType.from_string(value)
        return value

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Source url must be an http(s) URL: {value}")
        return value.strip()


class ScheduleConfig(BaseModel):
    """When the collector runs."""

    type: ScheduleType = ScheduleType.INTERVAL
    value: Any = Field(
        default="5m",
        description="Interval seconds / duration string, or cron expression.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON:
            if not isinstance(self.value, str) or not self.value.strip():
                raise ValueError("Cron schedule requires string expression")
        else:
            parse_duration(self.value)
        return self

    def interval(self) -> timedelta:
        if self.type is not ScheduleType.INTERVAL:
            raise ValueError("Only interval schedules have a fixed interval")
        return parse_duration(self.value)

    def describe(self) -> str:
        if self.type is ScheduleType.CRON:
            return f"cron ({self.value})"
        return f"interval ({self.interval()})"


class FetchConfig(BaseModel):
    """HTTP client options."""

    timeout: float = 15.0
    user_agent: str | None = None
    follow_redirects: bool = True

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be > 0")
        return value


class DeduplicationConfig(BaseModel):
    """Seen-line store settings."""

    backend: Literal["redis", "sqlite", "memory"] = "redis"
    ttl_seconds: int | None = None
    key_prefix: str = ""
    store_path: Path = Field(default=Path("data/history/seen_lines.db"))

    @field_validator("ttl_seconds")
    @classmethod
    def _positive_ttl(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("ttl_seconds must be > 0 or null")
        return value

    @field_validator("store_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_store_path(self, base_dir: Path) -> Path:
        if not self.store_path.is_absolute():
            return (base_dir / self.store_path).resolve()
        return self.store_path


class RedisConfig(BaseModel):
    """Connection settings for the shared dedup store."""

    host: str = "localhost"
    port: int = 6379
    user: str = ""
    password: str = ""
    db: int = 0
    tls: bool = False


class KafkaConfig(BaseModel):
    """Connection settings for the report topic."""

    host: str = "localhost"
    port: int = 9092
    topic: str = "storm-reports"
    user: str = ""
    password: str = ""
    header_key: str = "reportType"
    acks: Literal[0, 1, "all"] = 1
    client_id: str = "storm-collector"

    @field_validator("topic")
    @classmethod
    def _require_topic(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("kafka topic is required")
        return value.strip()

    @property
    def bootstrap_servers(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def uses_sasl(self) -> bool:
        return bool(self.user and self.password)


class PublisherConfig(BaseModel):
    """Where new lines are sent."""

    backend: Literal["kafka", "file"] = "kafka"
    output_dir: Path = Field(default=Path("data/outputs"))

    @field_validator("output_dir", mode="before")
    @classmethod
    def _coerce_dir(cls, value: Any) -> Path:
        return Path(value)


class CollectorConfig(BaseModel):
    """Full collector definition."""

    sources: list[ReportSource]
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    publisher: PublisherConfig = Field(default_factory=PublisherConfig)
    retry_buffer_size: int = 1000
    skip_unchanged_bodies: bool = False

    @field_validator("sources", mode="before")
    @classmethod
    def _coerce_mapping(cls, value: Any) -> Any:
        # Accept {Hail: url, Wind: url} as well as a list of entries.
        if isinstance(value, dict):
            return [{"category": key, "url": url} for key, url in value.items()]
        return value

    @model_validator(mode="after")
    def _validate_sources(self) -> "CollectorConfig":
        if not self.sources:
            raise ValueError("at least one collection url is required")
        seen: set[ReportType] = set()
        for source in self.sources:
            if source.category in seen:
                raise ValueError(f"duplicate source category: {source.category.value}")
            seen.add(source.category)
        if self.retry_buffer_size < 0:
            raise ValueError("retry_buffer_size must be >= 0")
        return self


__all__ = [
    "CollectorConfig",
    "DeduplicationConfig",
    "FetchConfig",
    "KafkaConfig",
    "PublisherConfig",
    "RedisConfig",
    "ReportSource",
    "ReportType",
    "ScheduleConfig",
    "ScheduleType",
    "parse_duration",
]
