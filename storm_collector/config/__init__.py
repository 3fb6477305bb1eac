"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    CollectorConfig,
    DeduplicationConfig,
    FetchConfig,
    KafkaConfig,
    PublisherConfig,
    RedisConfig,
    ReportSource,
    ReportType,
    ScheduleConfig,
    ScheduleType,
    parse_duration,
)
from .secrets import EnvSecretSource, SecretSource, apply_secrets

__all__ = [
    "CollectorConfig",
    "ConfigLocator",
    "ConfigRepository",
    "DeduplicationConfig",
    "EnvSecretSource",
    "FetchConfig",
    "KafkaConfig",
    "PublisherConfig",
    "RedisConfig",
    "ReportSource",
    "ReportType",
    "ScheduleConfig",
    "ScheduleType",
    "SecretSource",
    "apply_secrets",
    "parse_duration",
]
