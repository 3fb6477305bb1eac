"""Engine components: fetch → normalize → dedup → publish."""

from .dedup import (
    DeduplicationStore,
    InMemoryDeduplicationStore,
    RedisDeduplicationStore,
    SQLiteDeduplicationStore,
)
from .fetcher import Fetcher
from .normalizer import LineNormalizer, dedup_key
from .publisher import BasePublisher, FilePublisher, KafkaPublisher

__all__ = [
    "BasePublisher",
    "DeduplicationStore",
    "Fetcher",
    "FilePublisher",
    "InMemoryDeduplicationStore",
    "KafkaPublisher",
    "LineNormalizer",
    "RedisDeduplicationStore",
    "SQLiteDeduplicationStore",
    "dedup_key",
]
