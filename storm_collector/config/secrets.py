"""Secret lookup boundary for broker and store credentials."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Mapping

from .models import CollectorConfig

# secret key -> (config section, field)
SECRET_FIELDS: dict[str, tuple[str, str]] = {
    "redis_user": ("redis", "user"),
    "redis_password": ("redis", "password"),
    "kafka_user": ("kafka", "user"),
    "kafka_password": ("kafka", "password"),
}


class SecretSource(ABC):
    """Anything able to resolve a named secret."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the secret value or ``None`` when it is not set."""


class EnvSecretSource(SecretSource):
    """Read secrets from ``STORM_COLLECTOR_<KEY>`` environment variables."""

    def __init__(self, prefix: str = "STORM_COLLECTOR_", environ: Mapping[str, str] | None = None) -> None:
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str) -> str | None:
        value = self._environ.get(f"{self.prefix}{key.upper()}")
        return value or None


def apply_secrets(config: CollectorConfig, source: SecretSource) -> CollectorConfig:
    """Return a copy of ``config`` with any available secrets filled in."""

    sections: dict[str, dict[str, str]] = {}
    for key, (section, field) in SECRET_FIELDS.items():
        value = source.get(key)
        if value is not None:
            sections.setdefault(section, {})[field] = value
    if not sections:
        return config
    updates = {
        section: getattr(config, section).model_copy(update=fields)
        for section, fields in sections.items()
    }
    return config.model_copy(update=updates)


__all__ = ["EnvSecretSource", "SECRET_FIELDS", "SecretSource", "apply_secrets"]
