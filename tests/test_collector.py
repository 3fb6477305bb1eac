from __future__ import annotations

import httpx
import pytest

from storm_collector.collector import ReportCollector, RetryBuffer
from storm_collector.config import ReportSource, ReportType
from storm_collector.engine import DeduplicationStore, InMemoryDeduplicationStore
from storm_collector.errors import DedupStoreUnavailable, FatalAuthFailure, PublishFailed

HAIL_URL = "https://reports.test/today_filtered_hail.csv"
WIND_URL = "https://reports.test/today_filtered_wind.csv"

HAIL = ReportSource(category=ReportType.HAIL, url=HAIL_URL)
WIND = ReportSource(category=ReportType.WIND, url=WIND_URL)


def make_collector(feed, store, publisher, sources=(HAIL,), **kwargs) -> ReportCollector:
    return ReportCollector(sources, feed.fetcher(), store, publisher, **kwargs)


class CountingStore(InMemoryDeduplicationStore):
    def __init__(self) -> None:
        super().__init__()
        self.lookups = 0

    async def exists(self, key: bytes) -> bool:
        self.lookups += 1
        return await super().exists(key)


class FlakyStore(DeduplicationStore):
    """Memory store whose lookups fail for selected lines."""

    def __init__(self, failing: set[bytes] | None = None, fail_mark: bool = False) -> None:
        self.inner = InMemoryDeduplicationStore()
        self.failing = failing or set()
        self.fail_mark = fail_mark

    async def exists(self, key: bytes) -> bool:
        if any(key.endswith(fragment) for fragment in self.failing):
            raise DedupStoreUnavailable("exists", ConnectionError("reset by peer"))
        return await self.inner.exists(key)

    async def mark(self, key: bytes) -> None:
        if self.fail_mark:
            raise DedupStoreUnavailable("mark", ConnectionError("reset by peer"))
        await self.inner.mark(key)


async def test_first_cycle_publishes_every_new_line(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\nB\n")
    collector = make_collector(feed, store, publisher)

    [outcome] = await collector.collect_and_publish()

    assert publisher.lines() == [b"A", b"B"]
    assert all(category is ReportType.HAIL for _, category in publisher.sent)
    assert outcome.summary() == {
        "category": "Hail",
        "total": 2,
        "skipped": 0,
        "published": 2,
        "failed": 0,
        "fetched": True,
        "error": None,
    }


async def test_second_cycle_skips_lines_already_seen(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\nB\n")
    collector = make_collector(feed, store, publisher)
    await collector.collect_and_publish()

    [outcome] = await collector.collect_and_publish()

    assert len(publisher.sent) == 2
    assert (outcome.total, outcome.skipped, outcome.published) == (2, 2, 0)


async def test_formatting_variants_collapse_within_one_cycle(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\n  LINE1 ,  extra \nLINE1,extra\n")
    collector = make_collector(feed, store, publisher)

    [outcome] = await collector.collect_and_publish()

    assert publisher.lines() == [b"LINE1 ,  extra"]
    assert (outcome.total, outcome.skipped, outcome.published) == (2, 1, 1)


async def test_fetch_failure_isolated_to_one_source(feed, store, publisher) -> None:
    feed.set(HAIL_URL, status=503)
    feed.set(WIND_URL, "Header\nW1\n")
    collector = make_collector(feed, store, publisher, sources=(HAIL, WIND))

    hail, wind = await collector.collect_and_publish()

    assert hail.fetched is False
    assert "503" in hail.error
    assert hail.total == 0
    assert wind.published == 1
    assert publisher.sent == [(b"W1", ReportType.WIND)]


async def test_network_error_counts_as_fetch_failure(feed, store, publisher) -> None:
    feed.set(HAIL_URL, error=httpx.ConnectError("refused"))
    collector = make_collector(feed, store, publisher)

    [outcome] = await collector.collect_and_publish()

    assert outcome.fetched is False
    assert "refused" in outcome.error
    assert publisher.sent == []


async def test_same_text_under_two_categories_is_published_twice(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\n1510,UNK,Hays\n")
    feed.set(WIND_URL, "Header\n1510,UNK,Hays\n")
    collector = make_collector(feed, store, publisher, sources=(HAIL, WIND))

    await collector.collect_and_publish()

    assert publisher.sent == [
        (b"1510,UNK,Hays", ReportType.HAIL),
        (b"1510,UNK,Hays", ReportType.WIND),
    ]


async def test_sources_processed_in_configured_order(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\nH\n")
    feed.set(WIND_URL, "Header\nW\n")
    collector = make_collector(feed, store, publisher, sources=(WIND, HAIL))

    outcomes = await collector.collect_and_publish()

    assert [o.category for o in outcomes] == [ReportType.WIND, ReportType.HAIL]
    assert [str(r.url) for r in feed.requests] == [WIND_URL, HAIL_URL]


async def test_lookup_failure_only_affects_that_line(feed, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\nB\nC\n")
    store = FlakyStore(failing={b"B"})
    collector = make_collector(feed, store, publisher)

    [outcome] = await collector.collect_and_publish()

    assert publisher.lines() == [b"A", b"C"]
    assert (outcome.total, outcome.published, outcome.failed, outcome.skipped) == (3, 2, 1, 0)


async def test_mark_failure_still_publishes(feed, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\n")
    collector = make_collector(feed, FlakyStore(fail_mark=True), publisher)

    [outcome] = await collector.collect_and_publish()

    assert publisher.lines() == [b"A"]
    assert outcome.published == 1


async def test_publish_failure_is_counted_and_retried_next_cycle(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\nB\n")
    publisher.errors.append(PublishFailed(RuntimeError("broker down")))
    collector = make_collector(feed, store, publisher)

    [outcome] = await collector.collect_and_publish()

    assert (outcome.published, outcome.failed, outcome.skipped) == (1, 1, 0)
    assert publisher.lines() == [b"B"]
    assert collector.pending_retries == 1

    [outcome] = await collector.collect_and_publish()

    # A was marked before the failed publish, so the buffer is what delivers it
    assert publisher.lines() == [b"B", b"A"]
    assert outcome.skipped == 2
    assert collector.pending_retries == 0


async def test_retry_buffer_disabled_drops_failed_lines(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\n")
    publisher.fail_always = PublishFailed(RuntimeError("broker down"))
    collector = make_collector(feed, store, publisher, retry_buffer_size=0)

    [outcome] = await collector.collect_and_publish()

    assert outcome.failed == 1
    assert collector.pending_retries == 0


async def test_fatal_auth_failure_propagates(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\nB\n")
    publisher.fail_always = FatalAuthFailure("kafka", RuntimeError("not authorized"))
    collector = make_collector(feed, store, publisher)

    with pytest.raises(FatalAuthFailure):
        await collector.collect_and_publish()


async def test_unchanged_body_is_short_circuited(feed, publisher) -> None:
    store = CountingStore()
    feed.set(HAIL_URL, "Header\nA\nB\n")
    collector = make_collector(feed, store, publisher, skip_unchanged_bodies=True)
    await collector.collect_and_publish()
    lookups_after_first = store.lookups

    [outcome] = await collector.collect_and_publish()

    assert store.lookups == lookups_after_first
    assert (outcome.total, outcome.skipped, outcome.published) == (2, 2, 0)

    feed.set(HAIL_URL, "Header\nA\nB\nC\n")
    [outcome] = await collector.collect_and_publish()
    assert publisher.lines() == [b"A", b"B", b"C"]
    assert outcome.published == 1


async def test_unchanged_body_rechecked_after_failed_lines(feed, publisher) -> None:
    store = CountingStore()
    feed.set(HAIL_URL, "Header\nA\n")
    publisher.errors.append(PublishFailed(RuntimeError("broker down")))
    collector = make_collector(
        feed, store, publisher, skip_unchanged_bodies=True, retry_buffer_size=0
    )
    await collector.collect_and_publish()
    assert store.lookups == 1

    [outcome] = await collector.collect_and_publish()

    # body unchanged but previous cycle failed, so lines go through the store again
    assert store.lookups == 2
    assert outcome.skipped == 1
    assert outcome.total == 1


async def test_fatal_failure_during_retry_keeps_buffered_lines(feed, store, publisher) -> None:
    feed.set(HAIL_URL, "Header\nA\nB\nC\n")
    publisher.fail_always = PublishFailed(RuntimeError("broker down"))
    collector = make_collector(feed, store, publisher)
    await collector.collect_and_publish()
    assert collector.pending_retries == 3

    publisher.fail_always = FatalAuthFailure("kafka", RuntimeError("not authorized"))
    with pytest.raises(FatalAuthFailure):
        await collector.collect_and_publish()
    assert collector.pending_retries == 3

    publisher.fail_always = None
    await collector.collect_and_publish()
    assert publisher.lines() == [b"A", b"B", b"C"]
    assert collector.pending_retries == 0


def test_retry_buffer_evicts_oldest_first() -> None:
    buffer = RetryBuffer(2)
    assert buffer.push(ReportType.HAIL, b"1") is None
    assert buffer.push(ReportType.HAIL, b"2") is None
    assert buffer.push(ReportType.WIND, b"3") == (ReportType.HAIL, b"1")
    assert buffer.drain() == [(ReportType.HAIL, b"2"), (ReportType.WIND, b"3")]
    assert len(buffer) == 0


def test_retry_buffer_of_zero_rejects_everything() -> None:
    buffer = RetryBuffer(0)
    assert buffer.push(ReportType.TORNADO, b"x") == (ReportType.TORNADO, b"x")
    assert len(buffer) == 0


async def test_wind_report_scenario(feed, store, publisher) -> None:
    feed.set(WIND_URL, "Header\nLINE1\nLINE2\n")
    collector = make_collector(feed, store, publisher, sources=(WIND,))

    [first] = await collector.collect_and_publish()
    [second] = await collector.collect_and_publish()

    assert publisher.sent == [(b"LINE1", ReportType.WIND), (b"LINE2", ReportType.WIND)]
    assert (first.total, first.skipped, first.published) == (2, 0, 2)
    assert (second.total, second.skipped, second.published) == (2, 2, 0)


async def test_one_failing_feed_of_three(feed, store, publisher) -> None:
    tornado = ReportSource(category=ReportType.TORNADO, url="https://reports.test/today_filtered_torn.csv")
    feed.set(HAIL_URL, status=503)
    feed.set(WIND_URL, "Header\nW1\n")
    feed.set(tornado.url, "Header\nT1\nT2\n")
    collector = make_collector(feed, store, publisher, sources=(HAIL, WIND, tornado))

    hail, wind, torn = await collector.collect_and_publish()

    assert hail.fetched is False
    assert (wind.total, wind.published) == (1, 1)
    assert (torn.total, torn.published) == (2, 2)
