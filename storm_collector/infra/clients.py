"""Wire clients for the shared Redis store and the Kafka broker."""

from __future__ import annotations

from aiokafka import AIOKafkaProducer
from aiokafka.helpers import create_ssl_context
from redis.asyncio import Redis

from ..config import KafkaConfig, RedisConfig


def build_redis_client(config: RedisConfig) -> Redis:
    return Redis(
        host=config.host,
        port=config.port,
        username=config.user or None,
        password=config.password or None,
        db=config.db,
        ssl=config.tls,
    )


def build_kafka_producer(config: KafkaConfig) -> AIOKafkaProducer:
    """Create (but do not start) a producer; must run inside the event loop."""

    kwargs: dict = {
        "bootstrap_servers": config.bootstrap_servers,
        "client_id": config.client_id,
        "acks": config.acks,
    }
    if config.uses_sasl:
        kwargs.update(
            security_protocol="SASL_SSL",
            sasl_mechanism="SCRAM-SHA-256",
            sasl_plain_username=config.user,
            sasl_plain_password=config.password,
            ssl_context=create_ssl_context(),
        )
    return AIOKafkaProducer(**kwargs)


__all__ = ["build_kafka_producer", "build_redis_client"]
