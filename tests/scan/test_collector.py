"""Tests for per-token transaction collection."""

import pytest

from trendscan.config.chains import BASE, ETHEREUM
from trendscan.core.types import LogPage
from trendscan.scan.collector import TransactionCollector, compute_stats, decode_event
from trendscan.scan.scanner import APPROVAL_TOPIC, TRANSFER_TOPIC, ZERO_ADDRESS, EventScanner

TOKEN = "0x" + "a" * 40
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40


class TestDecodeEvent:
    """Test log decoding."""

    def test_decode_transfer(self, make_transfer):
        """Test decode transfer."""
        event = decode_event(make_transfer(ALICE, BOB, 10**30))

        assert event.event_type == "Transfer"
        assert event.from_address == ALICE
        assert event.to_address == BOB
        assert event.value == 10**30

    def test_decode_approval(self, make_transfer):
        """Test decode approval."""
        event = decode_event(make_transfer(ALICE, BOB, 5, event=APPROVAL_TOPIC))

        assert event.event_type == "Approval"

    def test_empty_data_is_zero(self, make_log):
        """Test empty data is zero."""
        topics = (TRANSFER_TOPIC, "0x" + "0" * 24 + "1" * 40, "0x" + "0" * 24 + "2" * 40)
        event = decode_event(make_log(topics=topics, data="0x"))

        assert event.value == 0

    def test_skips_short_topics(self, make_log):
        """Test skips short topics."""
        assert decode_event(make_log(topics=(TRANSFER_TOPIC,))) is None

    def test_skips_unknown_signature(self, make_log):
        """Test skips unknown signature."""
        topics = ("0x" + "9" * 64, "0x" + "0" * 64, "0x" + "0" * 64)
        assert decode_event(make_log(topics=topics)) is None


class TestComputeStats:
    """Test transaction statistics."""

    def test_empty(self):
        """Test an empty event list."""
        stats = compute_stats([])

        assert stats.total_count == 0
        assert stats.first_timestamp is None

    def test_counts_and_rate(self, make_transfer):
        """Test counts and rate."""
        events = [
            decode_event(make_transfer(ZERO_ADDRESS, ALICE, 100, timestamp=0)),
            decode_event(make_transfer(ALICE, BOB, 50, timestamp=3600)),
            decode_event(make_transfer(ALICE, BOB, 50, timestamp=7200, event=APPROVAL_TOPIC)),
            decode_event(make_transfer(BOB, ALICE, 10, timestamp=4 * 3600)),
        ]

        stats = compute_stats(events)

        assert stats.total_count == 4
        assert stats.transfer_count == 3
        assert stats.approval_count == 1
        assert stats.unique_address_count == 2
        assert stats.first_timestamp == 0
        assert stats.last_timestamp == 4 * 3600
        assert stats.rate_per_hour == pytest.approx(1.0)

    def test_span_has_one_hour_floor(self, make_transfer):
        """Test span has one hour floor."""
        events = [
            decode_event(make_transfer(ALICE, BOB, 1, timestamp=10)),
            decode_event(make_transfer(BOB, ALICE, 1, timestamp=20)),
        ]

        assert compute_stats(events).rate_per_hour == pytest.approx(2.0)


class TestTransactionCollector:
    """Test multi-chain collection."""

    @pytest.fixture
    def collector(self, log_source):
        scanner = EventScanner(log_source, request_delay=0)
        return TransactionCollector(scanner, [ETHEREUM, BASE], lookback_days=7)

    @pytest.mark.asyncio
    async def test_collects_every_chain_in_order(self, collector, log_source, make_transfer):
        """Test collects every chain in order."""
        log_source.pages[1] = [
            LogPage(logs=[make_transfer(ALICE, BOB, 1, token=TOKEN)], next_block=1)
        ]
        log_source.pages[8453] = [
            LogPage(
                logs=[make_transfer(BOB, ALICE, 2, token=TOKEN, chain_id=8453)],
                next_block=1,
            )
        ]

        bundle = await collector.collect(TOKEN.upper().replace("0X", "0x"))

        assert bundle.has_data
        assert [e.chain_id for e in bundle.events] == [1, 8453]
        assert bundle.stats.transfer_count == 2

        query = next(q for q in log_source.queries if q["chain_id"] == 1)
        assert query["filters"][0].addresses == (TOKEN,)
        assert query["filters"][0].topics == ((TRANSFER_TOPIC, APPROVAL_TOPIC),)
        assert query["from_block"] == log_source.height - 7 * 7200

    @pytest.mark.asyncio
    async def test_transfers_only_filter(self, collector, log_source):
        """Test transfers only filter."""
        await collector.collect(TOKEN, transfers_only=True)

        assert all(
            q["filters"][0].topics == ((TRANSFER_TOPIC,),) for q in log_source.queries
        )

    @pytest.mark.asyncio
    async def test_no_events_is_no_data(self, collector):
        """Test no events is no data."""
        bundle = await collector.collect(TOKEN)

        assert not bundle.has_data
        assert bundle.stats.total_count == 0

    @pytest.mark.asyncio
    async def test_endpoint_uses_first_chain_only(self, collector, log_source):
        """Test endpoint uses first chain only."""
        await collector.collect(TOKEN, endpoint="https://alt.example")

        assert {q["chain_id"] for q in log_source.queries} == {1}

    @pytest.mark.asyncio
    async def test_full_history_by_default(self, log_source, make_transfer):
        """Test that collection without a lookback starts at block 0."""
        collector = TransactionCollector(EventScanner(log_source, request_delay=0), [ETHEREUM])
        old = make_transfer(ALICE, BOB, 5, token=TOKEN, timestamp=1_500_000_000, block=10)
        log_source.pages[1] = [LogPage(logs=[old], next_block=11)]

        bundle = await collector.collect(TOKEN)

        assert [e.block_number for e in bundle.events] == [10]
        assert log_source.queries[0]["from_block"] == 0
        assert log_source.queries[0]["to_block"] is None
        assert log_source.height_calls == []

    @pytest.mark.asyncio
    async def test_endpoint_scans_first_configured_chain(self, log_source):
        """Test that an alternate endpoint follows the configured chain order."""
        scanner = EventScanner(log_source, request_delay=0)
        collector = TransactionCollector(scanner, [BASE, ETHEREUM])

        await collector.collect(TOKEN, endpoint="https://alt.example")

        assert {q["chain_id"] for q in log_source.queries} == {8453}
