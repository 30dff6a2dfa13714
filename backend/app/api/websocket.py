"""WebSocket endpoint for real-time signal delivery."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

import orjson
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from core.models.signal import TradeSignal

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[int], list[TradeSignal]]


def _orjson_dumps(obj: Any) -> str:
    """Serialize object to JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WebSocketMessage(BaseModel):
    """WebSocket message format."""

    type: str  # "initial", "signal", "ping", "pong", "error"
    data: dict[str, Any]
    timestamp: datetime

    def to_json(self) -> str:
        """Serialize to JSON string using orjson for performance."""
        return _orjson_dumps(self.model_dump(mode="json"))


class SubscriberState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Subscriber:
    """One live connection.

    ``send_lock`` serializes frames to this socket so the initial
    snapshot always goes out before any live push.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.state = SubscriberState.CONNECTING
        self.snapshot_ids: frozenset[str] = frozenset()
        self.send_lock = asyncio.Lock()

    async def send_text(self, text: str) -> None:
        async with self.send_lock:
            if self.state is SubscriberState.CLOSED:
                raise WebSocketDisconnect(code=1011)
            await self.websocket.send_text(text)


class ConnectionManager:
    """Manage subscriber connections and fan signals out to them.

    Broadcasts iterate a snapshot of the subscriber list taken under the
    lock, and deliver to every subscriber concurrently with a per-socket
    timeout; a slow or broken socket only affects itself. Delivery is
    at-most-once with no retries.
    """

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        snapshot_size: int = 20,
        send_timeout: float = 5.0,
    ):
        self._snapshot_provider = snapshot_provider
        self._snapshot_size = snapshot_size
        self._send_timeout = send_timeout
        self._subscribers: list[Subscriber] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> Subscriber:
        """Accept a connection, register it and send the initial snapshot."""
        await websocket.accept()
        subscriber = Subscriber(websocket)

        async with subscriber.send_lock:
            async with self._lock:
                self._subscribers.append(subscriber)
                # Taken after registering: anything newer will be pushed live
                snapshot = self._snapshot_provider(self._snapshot_size)
                subscriber.snapshot_ids = frozenset(s.id for s in snapshot)
                subscriber.state = SubscriberState.OPEN

            message = WebSocketMessage(
                type="initial",
                data={"signals": [s.model_dump(mode="json") for s in snapshot]},
                timestamp=_now(),
            )
            try:
                await websocket.send_text(message.to_json())
            except Exception:
                await self.disconnect(subscriber)
                raise

        logger.info(f"WebSocket connected. Total connections: {len(self._subscribers)}")
        return subscriber

    async def disconnect(self, subscriber: Subscriber) -> None:
        """Close and forget a subscriber. Safe to call more than once."""
        async with self._lock:
            subscriber.state = SubscriberState.CLOSED
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)
            else:
                return
        logger.info(f"WebSocket disconnected. Total connections: {len(self._subscribers)}")

    async def broadcast(self, message: WebSocketMessage, signal_id: str | None = None) -> int:
        """Send to every open subscriber. Returns how many received it."""
        async with self._lock:
            targets = [s for s in self._subscribers if s.state is SubscriberState.OPEN]
        if not targets:
            return 0

        message_text = message.to_json()
        results = await asyncio.gather(
            *(self._deliver(s, message_text, signal_id) for s in targets)
        )
        return sum(results)

    async def _deliver(self, subscriber: Subscriber, text: str, signal_id: str | None) -> bool:
        if signal_id is not None and signal_id in subscriber.snapshot_ids:
            return False  # already part of its initial snapshot
        try:
            async with subscriber.send_lock:
                if subscriber.state is not SubscriberState.OPEN:
                    return False
                await asyncio.wait_for(
                    subscriber.websocket.send_text(text), timeout=self._send_timeout
                )
            return True
        except Exception as e:
            logger.warning(f"Failed to send message: {e!r}")
            await self.disconnect(subscriber)
            await self._close_socket(subscriber)
            return False

    async def _close_socket(self, subscriber: Subscriber) -> None:
        try:
            await subscriber.websocket.close(code=1011)
        except Exception as e:
            logger.debug(f"Error closing websocket: {e!r}")

    async def send_signal(self, signal: TradeSignal) -> int:
        """Broadcast a new signal."""
        message = WebSocketMessage(
            type="signal",
            data=signal.model_dump(mode="json"),
            timestamp=_now(),
        )
        delivered = await self.broadcast(message, signal_id=signal.id)
        logger.info(f"Broadcasted signal {signal.id} to {delivered} clients")
        return delivered

    async def close_all(self) -> None:
        """Close every connection (shutdown)."""
        async with self._lock:
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.state = SubscriberState.CLOSED
            try:
                await subscriber.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing websocket: {e!r}")

    @property
    def connection_count(self) -> int:
        """Get number of active connections."""
        return len(self._subscribers)


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for the signal stream.

    Messages sent to clients:
    - initial: the most recent signals, newest first, right after connecting
    - signal: a newly ingested signal
    - ping / pong: keep-alive

    Message format:
    {
        "type": "signal",
        "data": {...},
        "timestamp": "2024-01-01T00:00:00+00:00"
    }
    """
    manager: ConnectionManager = websocket.app.state.services.subscribers
    try:
        subscriber = await manager.connect(websocket)
    except Exception as e:
        logger.warning(f"WebSocket handshake failed: {e!r}")
        return

    try:
        # Keep connection alive and handle incoming messages
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=60.0,
                )

                try:
                    message = orjson.loads(data)
                    await handle_client_message(subscriber, message)
                except orjson.JSONDecodeError:
                    await subscriber.send_text(_orjson_dumps({
                        "type": "error",
                        "data": {"message": "Invalid JSON"},
                        "timestamp": _now().isoformat(),
                    }))

            except asyncio.TimeoutError:
                # Send ping to keep connection alive
                await subscriber.send_text(_orjson_dumps({
                    "type": "ping",
                    "data": {},
                    "timestamp": _now().isoformat(),
                }))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e!r}")
    finally:
        await manager.disconnect(subscriber)


async def handle_client_message(subscriber: Subscriber, message: Any) -> None:
    """Handle incoming message from client."""
    msg_type = message.get("type", "") if isinstance(message, dict) else ""

    if msg_type == "ping":
        reply = {"type": "pong", "data": {}}
    else:
        reply = {"type": "error", "data": {"message": f"Unknown message type: {msg_type}"}}
    reply["timestamp"] = _now().isoformat()
    await subscriber.send_text(_orjson_dumps(reply))
