from __future__ import annotations

import json
from pathlib import Path

import pytest
from aiokafka.errors import (
    AuthenticationFailedError,
    KafkaConnectionError,
    SaslAuthenticationFailed,
    TopicAuthorizationFailedError,
    UnsupportedSaslMechanismError,
)

from storm_collector.config import KafkaConfig, ReportType
from storm_collector.engine import FilePublisher, KafkaPublisher
from storm_collector.errors import FatalAuthFailure, PublishFailed


class FakeProducer:
    def __init__(self, start_error: Exception | None = None) -> None:
        self.sent: list[tuple[str, bytes, list]] = []
        self.send_error: Exception | None = None
        self.start_error = start_error
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def send_and_wait(self, topic: str, value: bytes | None = None, headers=None):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((topic, value, headers))

    async def stop(self) -> None:
        self.stopped = True


class ProducerQueue:
    """Hands out prepared producers in order, one per start attempt."""

    def __init__(self, *producers: FakeProducer) -> None:
        self.pending = list(producers)
        self.built: list[FakeProducer] = []

    def __call__(self) -> FakeProducer:
        producer = self.pending.pop(0)
        self.built.append(producer)
        return producer


async def test_kafka_publisher_tags_message_with_category() -> None:
    producer = FakeProducer()
    publisher = KafkaPublisher(KafkaConfig(topic="storm-reports"), lambda: producer)
    await publisher.start()

    await publisher.publish(b"1510,125,Hays", ReportType.TORNADO)
    await publisher.close()

    assert producer.started and producer.stopped
    assert producer.sent == [("storm-reports", b"1510,125,Hays", [("reportType", b"Tornado")])]


async def test_kafka_publisher_custom_header_key() -> None:
    producer = FakeProducer()
    publisher = KafkaPublisher(KafkaConfig(header_key="category"), lambda: producer)
    await publisher.publish(b"x", ReportType.HAIL)
    assert producer.started
    assert producer.sent[0][2] == [("category", b"Hail")]


async def test_kafka_transport_errors_become_publish_failed() -> None:
    producer = FakeProducer()
    producer.send_error = KafkaConnectionError()
    publisher = KafkaPublisher(KafkaConfig(), lambda: producer)

    with pytest.raises(PublishFailed):
        await publisher.publish(b"x", ReportType.WIND)


async def test_kafka_authorization_errors_are_fatal() -> None:
    producer = FakeProducer()
    producer.send_error = TopicAuthorizationFailedError()
    publisher = KafkaPublisher(KafkaConfig(), lambda: producer)

    with pytest.raises(FatalAuthFailure) as info:
        await publisher.publish(b"x", ReportType.WIND)
    assert info.value.component == "kafka"


@pytest.mark.parametrize(
    "error",
    [SaslAuthenticationFailed(), UnsupportedSaslMechanismError(), AuthenticationFailedError()],
    ids=["sasl-failed", "unsupported-mechanism", "authentication-failed"],
)
async def test_rejected_credentials_at_start_are_fatal(error: Exception) -> None:
    producer = FakeProducer(start_error=error)
    publisher = KafkaPublisher(KafkaConfig(), lambda: producer)

    with pytest.raises(FatalAuthFailure) as info:
        await publisher.start()

    assert info.value.cause is error
    assert producer.stopped is True


async def test_rejected_credentials_on_send_are_fatal() -> None:
    producer = FakeProducer()
    producer.send_error = SaslAuthenticationFailed()
    publisher = KafkaPublisher(KafkaConfig(), lambda: producer)

    with pytest.raises(FatalAuthFailure):
        await publisher.publish(b"x", ReportType.HAIL)


async def test_unreachable_broker_at_start_stops_producer_and_reconnects_later() -> None:
    unreachable = FakeProducer(start_error=KafkaConnectionError())
    healthy = FakeProducer()
    factory = ProducerQueue(unreachable, healthy)
    publisher = KafkaPublisher(KafkaConfig(topic="storm-reports"), factory)

    with pytest.raises(PublishFailed):
        await publisher.start()
    assert unreachable.stopped is True
    assert publisher.producer is None

    await publisher.publish(b"1510,125,Hays", ReportType.HAIL)
    await publisher.close()

    assert factory.built == [unreachable, healthy]
    assert healthy.sent == [("storm-reports", b"1510,125,Hays", [("reportType", b"Hail")])]
    assert healthy.stopped is True


async def test_publish_while_broker_unreachable_raises_publish_failed() -> None:
    factory = ProducerQueue(
        FakeProducer(start_error=KafkaConnectionError()),
        FakeProducer(start_error=KafkaConnectionError()),
    )
    publisher = KafkaPublisher(KafkaConfig(), factory)

    with pytest.raises(PublishFailed):
        await publisher.start()
    with pytest.raises(PublishFailed):
        await publisher.publish(b"x", ReportType.WIND)

    assert all(producer.stopped for producer in factory.built)
    await publisher.close()


async def test_file_publisher_writes_jsonl(tmp_path: Path) -> None:
    publisher = FilePublisher(tmp_path / "outputs", "storm-reports", run_tag="test")
    await publisher.start()
    await publisher.publish(b"1510,125,Hays", ReportType.HAIL)
    await publisher.publish(b"1600,UNK,Salina", ReportType.WIND)
    await publisher.close()

    assert publisher.path == tmp_path / "outputs" / "storm-reports-test.jsonl"
    records = [json.loads(line) for line in publisher.path.read_text(encoding="utf-8").splitlines()]
    assert records == [
        {"topic": "storm-reports", "value": "1510,125,Hays", "headers": {"reportType": "Hail"}},
        {"topic": "storm-reports", "value": "1600,UNK,Salina", "headers": {"reportType": "Wind"}},
    ]
