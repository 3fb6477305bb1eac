"""Infra layer utilities (local storage, wire clients)."""

from .clients import build_kafka_producer, build_redis_client
from .storage import SQLiteManager

__all__ = ["SQLiteManager", "build_kafka_producer", "build_redis_client"]
