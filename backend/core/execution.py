"""Execution backend protocol.

The execution backend places orders against a student's remote trading
terminal. The relay only needs three things from it: open a session for
new credentials, drop a session it opened, and place a market order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from core.models.signal import Direction


@dataclass(frozen=True)
class AccountCredentials:
    """Login details handed to the backend at registration; never stored."""

    login: str
    password: str
    server: str
    name: str
    broker: str = "Unknown"


@dataclass(frozen=True)
class OrderRequest:
    """A market order to copy a signal onto one account."""

    account_ref: str
    symbol: str
    direction: Direction
    size: float
    stop_loss: float
    take_profit: float
    comment: str = "EdgeFlow"


@runtime_checkable
class ExecutionBackend(Protocol):
    """Interface the relay expects from a trading-account backend.

    Every method raises on failure.
    """

    async def connect_account(self, credentials: AccountCredentials) -> str:
        """Create and connect an account session. Returns its handle."""
        ...

    async def remove_account(self, account_ref: str) -> None:
        """Tear down a session created by ``connect_account``."""
        ...

    async def place_order(self, order: OrderRequest) -> None:
        """Place a market order."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...
