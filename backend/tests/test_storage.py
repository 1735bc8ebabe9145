"""Tests for the indicator cache and the event log."""

import orjson
import pytest
import redis.asyncio as redis
from unittest.mock import AsyncMock, MagicMock

from app.storage.event_log import EventLog
from app.storage.indicator_cache import IndicatorCache
from core.models.events import IndicatorUpdateEvent


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.client = AsyncMock()
    return conn


class TestIndicatorCache:
    """Tests for IndicatorCache."""

    @pytest.mark.asyncio
    async def test_put_sets_ttl(self, connection):
        """Test writing an entry with its TTL."""
        cache = IndicatorCache(connection)
        series = {"2024-01-05": {"SMA": "155.0"}}

        entry = await cache.put("indicator:x", series, {"last_refreshed": "2024-01-05"}, 90000)

        connection.client.set.assert_awaited_once()
        args, kwargs = connection.client.set.call_args
        assert args[0] == "indicator:x"
        assert kwargs["ex"] == 90000
        stored = orjson.loads(args[1])
        assert stored["data"] == series
        assert stored["ttl_seconds"] == 90000
        assert entry.data == series

    @pytest.mark.asyncio
    async def test_put_propagates_errors(self, connection):
        """Test write errors propagate."""
        connection.client.set.side_effect = redis.ConnectionError("down")
        cache = IndicatorCache(connection)
        with pytest.raises(redis.RedisError):
            await cache.put("indicator:x", {}, {}, 60)

    @pytest.mark.asyncio
    async def test_get_hit(self, connection):
        """Test reading a cached entry."""
        payload = {
            "fingerprint": "indicator:x",
            "data": {"2024-01-05": {"SMA": "155.0"}},
            "metadata": {},
            "fetched_at": "2024-01-05T12:00:00+00:00",
            "ttl_seconds": 90000,
        }
        connection.client.get.return_value = orjson.dumps(payload)
        cache = IndicatorCache(connection)

        entry = await cache.get("indicator:x")

        assert entry is not None
        assert entry.data == payload["data"]
        assert entry.ttl_seconds == 90000

    @pytest.mark.asyncio
    async def test_get_miss(self, connection):
        """Test reading a missing key."""
        connection.client.get.return_value = None
        assert await IndicatorCache(connection).get("indicator:x") is None

    @pytest.mark.asyncio
    async def test_get_error_is_miss(self, connection):
        """Test a read error counts as a miss."""
        connection.client.get.side_effect = redis.ConnectionError("down")
        assert await IndicatorCache(connection).get("indicator:x") is None

    @pytest.mark.asyncio
    async def test_get_malformed_is_miss(self, connection):
        """Test a malformed value counts as a miss."""
        connection.client.get.return_value = b"not json"
        assert await IndicatorCache(connection).get("indicator:x") is None


class TestEventLog:
    """Tests for EventLog stream operations."""

    @pytest.mark.asyncio
    async def test_publish_indicator_update(self, connection):
        """Test publishing an indicator update."""
        connection.client.xadd.return_value = b"1-0"
        log = EventLog(connection)
        event = IndicatorUpdateEvent(
            fingerprint="indicator:x",
            indicator_type="SMA",
            symbol="AAPL",
            interval="daily",
            parameters={"time_period": 20},
        )

        entry_id = await log.publish_indicator_update(event)

        assert entry_id == "1-0"
        stream, fields = connection.client.xadd.call_args[0]
        assert stream == "indicator-updates"
        assert fields["parameters"] == '{"time_period":20}'

    @pytest.mark.asyncio
    async def test_ensure_group_creates_stream(self, connection):
        """Test group creation with MKSTREAM."""
        await EventLog(connection).ensure_group("s", "g")
        connection.client.xgroup_create.assert_awaited_once_with("s", "g", id="0", mkstream=True)

    @pytest.mark.asyncio
    async def test_ensure_group_tolerates_busygroup(self, connection):
        """Test group creation tolerates an existing group."""
        connection.client.xgroup_create.side_effect = redis.ResponseError(
            "BUSYGROUP Consumer Group name already exists"
        )
        await EventLog(connection).ensure_group("s", "g")

    @pytest.mark.asyncio
    async def test_ensure_group_raises_other_errors(self, connection):
        """Test group creation re-raises other errors."""
        connection.client.xgroup_create.side_effect = redis.ResponseError("WRONGTYPE")
        with pytest.raises(redis.ResponseError):
            await EventLog(connection).ensure_group("s", "g")

    @pytest.mark.asyncio
    async def test_read_group_parses_response(self, connection):
        """Test parsing a group read response."""
        connection.client.xreadgroup.return_value = [
            [b"s", [(b"1-0", {b"a": b"1"}), (b"2-0", {b"a": b"2"})]]
        ]
        entries = await EventLog(connection).read_group("s", "g", "c", count=5, block_ms=100)

        assert entries == [("1-0", {b"a": b"1"}), ("2-0", {b"a": b"2"})]
        kwargs = connection.client.xreadgroup.call_args.kwargs
        assert kwargs["block"] == 100
        assert kwargs["count"] == 5

    @pytest.mark.asyncio
    async def test_pending_read_does_not_block(self, connection):
        """Test pending reads do not block."""
        connection.client.xreadgroup.return_value = []
        entries = await EventLog(connection).read_group("s", "g", "c", last_id="0")

        assert entries == []
        assert connection.client.xreadgroup.call_args.kwargs["block"] is None

    @pytest.mark.asyncio
    async def test_claim_stale(self, connection):
        """Test claiming stale pending entries."""
        connection.client.xautoclaim.return_value = [b"0-0", [(b"3-0", {b"a": b"1"})], []]
        entries = await EventLog(connection).claim_stale("s", "g", "c", min_idle_ms=1000)
        assert entries == [("3-0", {b"a": b"1"})]

    @pytest.mark.asyncio
    async def test_dead_letter(self, connection):
        """Test copying a failed entry to the dead-letter stream."""
        log = EventLog(connection)
        await log.dead_letter("s", "1-0", {b"a": b"1"}, "boom")

        stream, record = connection.client.xadd.call_args[0]
        assert stream == "s:dead-letter"
        assert record["dead_letter_source_id"] == "1-0"
        assert record["dead_letter_error"] == "boom"
        assert record[b"a"] == b"1"

    @pytest.mark.asyncio
    async def test_dead_letter_never_raises(self, connection):
        """Test dead-lettering swallows write errors."""
        connection.client.xadd.side_effect = redis.ConnectionError("down")
        await EventLog(connection).dead_letter("s", "1-0", None, "boom")

    @pytest.mark.asyncio
    async def test_ack(self, connection):
        """Test acknowledging an entry."""
        await EventLog(connection).ack("s", "g", "1-0")
        connection.client.xack.assert_awaited_once_with("s", "g", "1-0")
