"""MetaApi cloud REST client for provisioning MT5 accounts and trading."""

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Trade result codes that mean the order was accepted
# (ERR_NO_ERROR, TRADE_RETCODE_PLACED, TRADE_RETCODE_DONE, TRADE_RETCODE_DONE_PARTIAL)
SUCCESS_CODES = {0, 10008, 10009, 10010}


class MetaApiError(Exception):
    """MetaApi rejected a request or a trade."""


class MetaApiRestClient:
    """Thin async client over the provisioning and trading REST APIs."""

    PROVISIONING_URL = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"
    CLIENT_URL = "https://mt-client-api-v1.new-york.agiliumtrade.ai"

    def __init__(
        self,
        token: str,
        provisioning_url: str | None = None,
        client_url: str | None = None,
        poll_interval: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.provisioning_url = provisioning_url or self.PROVISIONING_URL
        self.client_url = client_url or self.CLIENT_URL
        self.poll_interval = poll_interval
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}

    async def _get_client(self, base_url: str) -> httpx.AsyncClient:
        """Get or create the HTTP client for a base URL."""
        client = self._clients.get(base_url)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                base_url=base_url,
                headers={"auth-token": self.token},
                timeout=30.0,
                transport=self._transport,
            )
            self._clients[base_url] = client
        return client

    async def close(self) -> None:
        """Close the HTTP clients."""
        for client in self._clients.values():
            if not client.is_closed:
                await client.aclose()
        self._clients.clear()

    async def _request(
        self,
        base_url: str,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        client = await self._get_client(base_url)
        response = await client.request(method, endpoint, json=json)
        if response.is_error:
            raise MetaApiError(
                f"{method} {endpoint} failed with HTTP {response.status_code}: {response.text[:200]}"
            )
        if not response.content:
            return None
        return response.json()

    async def create_account(
        self, login: str, password: str, server: str, name: str
    ) -> str:
        """Provision a cloud MT5 account. Returns the MetaApi account id."""
        data = await self._request(
            self.provisioning_url,
            "POST",
            "/users/current/accounts",
            json={
                "name": name,
                "type": "cloud",
                "login": login,
                "password": password,
                "server": server,
                "platform": "mt5",
                "application": "MetaApi",
                "magic": 0,
            },
        )
        account_id = data["id"]
        logger.info(f"MetaApi account created: {account_id} ({name})")
        return account_id

    async def deploy_account(self, account_id: str) -> None:
        await self._request(
            self.provisioning_url, "POST", f"/users/current/accounts/{account_id}/deploy"
        )

    async def get_account(self, account_id: str) -> dict[str, Any]:
        return await self._request(
            self.provisioning_url, "GET", f"/users/current/accounts/{account_id}"
        )

    async def wait_connected(self, account_id: str) -> None:
        """Poll until the terminal reports CONNECTED. Callers bound the wait."""
        while True:
            account = await self.get_account(account_id)
            if account.get("connectionStatus") == "CONNECTED":
                logger.info(f"MetaApi account {account_id} connected")
                return
            await asyncio.sleep(self.poll_interval)

    async def remove_account(self, account_id: str) -> None:
        await self._request(
            self.provisioning_url, "DELETE", f"/users/current/accounts/{account_id}"
        )
        logger.info(f"MetaApi account removed: {account_id}")

    async def trade(self, account_id: str, action: dict[str, Any]) -> dict[str, Any]:
        """Submit a trade action; raises MetaApiError unless it was accepted."""
        result = await self._request(
            self.client_url, "POST", f"/users/current/accounts/{account_id}/trade", json=action
        )
        code = result.get("numericCode")
        if code not in SUCCESS_CODES:
            raise MetaApiError(
                f"Trade rejected: {result.get('stringCode')} ({code}) {result.get('message', '')}".strip()
            )
        return result
