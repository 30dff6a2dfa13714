"""Tests for the bounded signal log."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.errors import BackendFailure, ValidationError
from app.services.signal_log import SignalLog
from app.storage.record_store import SIGNALS, MemoryRecordStore
from core.keys import MonotonicIdGenerator
from core.models.signal import DEFAULT_EA_ID, Direction


async def _ingest(log: SignalLog, n: int, mentor_id: str = "48213", ea_id: str = "EA1"):
    signals = []
    for i in range(n):
        signals.append(
            await log.ingest(mentor_id, ea_id, "buy", "xauusd", sl=1900.0 + i, tp=2000.0)
        )
    return signals


class TestSignalIngest:
    @pytest.fixture
    def store(self):
        return MemoryRecordStore()

    @pytest.fixture
    def log(self, store):
        return SignalLog(store)

    @pytest.mark.asyncio
    async def test_ingest_normalizes_case(self, log):
        signal = await log.ingest(
            "48213", "EA1", " sell ", " eurusd", sl=1.1, tp=1.0,
            entry_price=1.05, size=0.5, comment="scalp",
        )
        assert signal.direction is Direction.SELL
        assert signal.symbol == "EURUSD"
        assert signal.entry_price == 1.05
        assert signal.size == 0.5
        assert signal.comment == "scalp"
        assert signal.mentor_id == "48213"

    @pytest.mark.asyncio
    async def test_missing_ea_defaults(self, log):
        signal = await log.ingest("48213", None, "BUY", "XAUUSD", sl=1, tp=2)
        assert signal.ea_id == DEFAULT_EA_ID

    @pytest.mark.asyncio
    async def test_missing_fields_listed_exactly(self, log):
        with pytest.raises(ValidationError) as exc_info:
            await log.ingest("48213", "EA1", "BUY", None, sl=None, tp=None)
        assert exc_info.value.fields == ["symbol", "sl", "tp"]
        assert log.count == 0

    @pytest.mark.asyncio
    async def test_blank_symbol_is_missing(self, log):
        with pytest.raises(ValidationError) as exc_info:
            await log.ingest("48213", "EA1", "BUY", "  ", sl=1, tp=2)
        assert exc_info.value.fields == ["symbol"]

    @pytest.mark.asyncio
    async def test_missing_direction(self, log):
        with pytest.raises(ValidationError) as exc_info:
            await log.ingest("48213", "EA1", None, "XAUUSD", sl=1, tp=2)
        assert exc_info.value.fields == ["direction"]

    @pytest.mark.asyncio
    async def test_invalid_direction(self, log):
        with pytest.raises(ValidationError) as exc_info:
            await log.ingest("48213", "EA1", "HOLD", "XAUUSD", sl=1, tp=2)
        assert exc_info.value.reason == "invalid_direction"
        assert log.count == 0

    @pytest.mark.asyncio
    async def test_zero_stop_loss_is_a_value(self, log):
        signal = await log.ingest("48213", "EA1", "BUY", "XAUUSD", sl=0, tp=2)
        assert signal.stop_loss == 0.0

    @pytest.mark.asyncio
    async def test_store_failure_appends_nothing(self, log, store):
        with patch.object(store, "upsert", new_callable=AsyncMock, side_effect=BackendFailure("storage_unavailable")):
            with pytest.raises(BackendFailure):
                await log.ingest("48213", "EA1", "BUY", "XAUUSD", sl=1, tp=2)
        assert log.count == 0


class TestSignalRetention:
    @pytest.fixture
    def store(self):
        return MemoryRecordStore()

    @pytest.fixture
    def log(self, store):
        return SignalLog(store)

    @pytest.mark.asyncio
    async def test_ids_strictly_increase(self, log):
        signals = await _ingest(log, 50)
        sequences = [s.sequence for s in signals]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == 50

    @pytest.mark.asyncio
    async def test_recent_is_newest_first(self, log):
        signals = await _ingest(log, 5)
        assert log.recent() == list(reversed(signals))
        assert log.recent(2) == [signals[4], signals[3]]
        assert log.recent(0) == []

    @pytest.mark.asyncio
    async def test_log_is_capped_at_100(self, log, store):
        signals = await _ingest(log, 130)

        assert log.count == 100
        recent = log.recent(100)
        assert recent == list(reversed(signals[30:]))
        assert all(s not in log.recent() for s in signals[:30])
        assert store.count(SIGNALS) == 100

    @pytest.mark.asyncio
    async def test_concurrent_ingest_keeps_cap_and_order(self, log):
        await asyncio.gather(
            *(log.ingest("48213", "EA1", "BUY", "XAUUSD", sl=i, tp=i + 1) for i in range(150))
        )
        recent = log.recent()
        assert len(recent) == 100
        sequences = [s.sequence for s in recent]
        assert sequences == sorted(sequences, reverse=True)

    @pytest.mark.asyncio
    async def test_ids_not_reused_after_eviction(self, store):
        log = SignalLog(store, limit=3, id_generator=MonotonicIdGenerator(clock_ms=lambda: 1000))
        signals = await _ingest(log, 6)
        assert [s.id for s in signals] == ["1000", "1001", "1002", "1003", "1004", "1005"]

    @pytest.mark.asyncio
    async def test_by_ea_and_mentor(self, log):
        await _ingest(log, 2, mentor_id="11111", ea_id="EA1")
        await _ingest(log, 3, mentor_id="22222", ea_id="EA2")
        assert len(log.by_ea("EA1")) == 2
        assert len(log.by_ea("EA2")) == 3
        assert {s.mentor_id for s in log.by_mentor("22222")} == {"22222"}

    @pytest.mark.asyncio
    async def test_since_returns_newer_oldest_first(self, log):
        signals = await _ingest(log, 5)
        newer = log.since(signals[1].id)
        assert newer == signals[2:]
        assert log.since(None) == signals
        assert log.since(signals[-1].id) == []

    @pytest.mark.asyncio
    async def test_since_filters_by_ea(self, log):
        await _ingest(log, 2, ea_id="EA1")
        await _ingest(log, 2, ea_id="EA2")
        assert {s.ea_id for s in log.since(None, ea_id="EA2")} == {"EA2"}

    def test_since_rejects_garbage(self, log):
        with pytest.raises(ValidationError):
            log.since("abc")

    @pytest.mark.asyncio
    async def test_load_restores_history_and_id_floor(self, log, store):
        signals = await _ingest(log, 3)

        reloaded = SignalLog(store, id_generator=MonotonicIdGenerator(clock_ms=lambda: 1))
        assert await reloaded.load() == 3
        assert reloaded.recent() == list(reversed(signals))

        fresh = await reloaded.ingest("48213", "EA1", "BUY", "XAUUSD", sl=1, tp=2)
        assert fresh.sequence > signals[-1].sequence
