"""MetaApi-backed execution backend for MT5 student accounts."""

import logging

from app.clients.metaapi_rest import MetaApiRestClient
from app.config import Settings
from core.execution import AccountCredentials, OrderRequest
from core.models.signal import Direction

logger = logging.getLogger(__name__)

_ACTION_TYPES = {
    Direction.BUY: "ORDER_TYPE_BUY",
    Direction.SELL: "ORDER_TYPE_SELL",
}


class MetaApiExecutionBackend:
    """ExecutionBackend implementation on top of MetaApiRestClient."""

    def __init__(self, client: MetaApiRestClient):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetaApiExecutionBackend":
        return cls(
            MetaApiRestClient(
                token=settings.metaapi_token,
                provisioning_url=settings.metaapi_provisioning_url,
                client_url=settings.metaapi_client_url,
            )
        )

    async def connect_account(self, credentials: AccountCredentials) -> str:
        account_id = await self._client.create_account(
            login=credentials.login,
            password=credentials.password,
            server=credentials.server,
            name=credentials.name,
        )
        await self._client.deploy_account(account_id)
        await self._client.wait_connected(account_id)
        return account_id

    async def remove_account(self, account_ref: str) -> None:
        await self._client.remove_account(account_ref)

    async def place_order(self, order: OrderRequest) -> None:
        result = await self._client.trade(
            order.account_ref,
            {
                "actionType": _ACTION_TYPES[order.direction],
                "symbol": order.symbol,
                "volume": order.size,
                "stopLoss": order.stop_loss,
                "takeProfit": order.take_profit,
                "comment": order.comment,
            },
        )
        logger.debug(f"Order placed on {order.account_ref}: {result.get('orderId')}")

    async def close(self) -> None:
        await self._client.close()
