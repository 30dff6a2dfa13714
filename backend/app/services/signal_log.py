"""Bounded, newest-first log of trading signals."""

import asyncio
import logging

from app.errors import BackendFailure, ValidationError, require_fields
from app.storage.record_store import SIGNALS, RecordStore
from core.clock import Clock, utc_now
from core.keys import MonotonicIdGenerator
from core.models.signal import DEFAULT_EA_ID, Direction, TradeSignal

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100
SNAPSHOT_SIZE = 20


def _to_float(name: str, value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError("invalid_fields", fields=[name]) from None


class SignalLog:
    """Append-only signal history capped at ``limit`` entries.

    Id assignment, store write, prepend and trim happen under one lock, so
    concurrent ingests can't lose an update or break ordering. Ids are
    strictly increasing and never reused, even across evictions.
    """

    def __init__(
        self,
        store: RecordStore,
        limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Clock = utc_now,
        id_generator: MonotonicIdGenerator | None = None,
    ):
        if limit < 1:
            raise ValueError("limit must be positive")
        self._store = store
        self._limit = limit
        self._clock = clock
        self._ids = id_generator or MonotonicIdGenerator()
        self._signals: list[TradeSignal] = []  # newest first
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        """Reload retained history from the store."""
        records = await self._store.load(SIGNALS)
        signals = sorted(
            (TradeSignal(**r) for r in records), key=lambda s: s.sequence, reverse=True
        )
        async with self._lock:
            self._signals = signals[: self._limit]
            for signal in signals:
                self._ids.observe(signal.id)
        logger.info(f"Loaded {len(self._signals)} signals")
        return len(self._signals)

    async def ingest(
        self,
        mentor_id: str,
        ea_id: str | None,
        direction: str | None,
        symbol: str | None,
        sl: float | None,
        tp: float | None,
        entry_price: float | None = None,
        size: float | None = None,
        comment: str | None = None,
    ) -> TradeSignal:
        """Validate, normalize and append a signal. Returns the stored signal."""
        require_fields(direction=direction, symbol=symbol, sl=sl, tp=tp)

        try:
            normalized_direction = Direction(str(direction).strip().upper())
        except ValueError:
            raise ValidationError(
                "invalid_direction",
                fields=["direction"],
                detail="direction must be BUY or SELL",
            ) from None

        stop_loss = _to_float("sl", sl)
        take_profit = _to_float("tp", tp)
        entry = _to_float("entry_price", entry_price) if entry_price is not None else None
        lot = _to_float("size", size) if size is not None else None

        async with self._lock:
            signal = TradeSignal(
                id=self._ids.next_id(),
                mentor_id=mentor_id,
                ea_id=(ea_id or "").strip() or DEFAULT_EA_ID,
                direction=normalized_direction,
                symbol=str(symbol).strip().upper(),
                entry_price=entry,
                stop_loss=stop_loss,
                take_profit=take_profit,
                size=lot,
                comment=comment or None,
                created_at=self._clock(),
            )
            await self._store.upsert(SIGNALS, signal.model_dump())

            self._signals.insert(0, signal)
            evicted = self._signals[self._limit:]
            del self._signals[self._limit:]

            for old in evicted:
                try:
                    await self._store.delete(SIGNALS, old.id)
                except BackendFailure as e:
                    # Stale rows are trimmed again on the next load
                    logger.warning(f"Failed to delete evicted signal {old.id}: {e}")

        logger.info(
            f"Signal {signal.id}: {signal.direction.value} {signal.symbol} "
            f"@ {signal.entry_price} (mentor={signal.mentor_id}, ea={signal.ea_id})"
        )
        return signal

    def recent(self, n: int | None = None) -> list[TradeSignal]:
        """The ``n`` newest signals (all when ``n`` is None), newest first."""
        if n is None:
            return list(self._signals)
        if n <= 0:
            return []
        return self._signals[:n]

    def by_ea(self, ea_id: str) -> list[TradeSignal]:
        return [s for s in self._signals if s.ea_id == ea_id]

    def by_mentor(self, mentor_id: str) -> list[TradeSignal]:
        return [s for s in self._signals if s.mentor_id == mentor_id]

    def since(self, after_id: str | None = None, ea_id: str | None = None) -> list[TradeSignal]:
        """Signals issued after ``after_id``, oldest first (agent polling)."""
        if after_id:
            try:
                after = int(after_id)
            except ValueError:
                raise ValidationError("invalid_fields", fields=["since"]) from None
        else:
            after = -1

        newer = [
            s
            for s in reversed(self._signals)
            if s.sequence > after and (ea_id is None or s.ea_id == ea_id)
        ]
        return newer

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def count(self) -> int:
        return len(self._signals)
