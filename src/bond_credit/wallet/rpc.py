"""Async NEAR JSON-RPC client over httpx."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger("bond_credit.wallet.rpc")


class NearRpcError(Exception):
    """A JSON-RPC call failed at the transport, HTTP or node level."""

    def __init__(self, message: str, name: str = "", cause: str = "", data: Any = None) -> None:
        super().__init__(message)
        self.name = name
        self.cause = cause
        self.data = data

    @property
    def is_rate_limit(self) -> bool:
        return "rate limit" in str(self).lower()

    @property
    def is_timeout(self) -> bool:
        return "timeout" in str(self).lower()

    @property
    def invalid_nonce(self) -> dict | None:
        """The node's ``InvalidNonce`` details (``tx_nonce``, ``ak_nonce``), if any."""
        return _find_key(self.data, "InvalidNonce")


def _find_key(data: Any, key: str) -> Any:
    if isinstance(data, dict):
        if key in data:
            return data[key]
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return None
    for child in children:
        found = _find_key(child, key)
        if found is not None:
            return found
    return None


def _error_message(error: Any) -> tuple[str, str, str]:
    if not isinstance(error, dict):
        return str(error), "", ""
    name = error.get("name", "")
    cause = error.get("cause") or {}
    cause_name = cause.get("name", "") if isinstance(cause, dict) else str(cause)
    data = error.get("data")
    detail = data if isinstance(data, str) else error.get("message", "RPC error")
    if cause_name:
        detail = f"{cause_name}: {detail}"
    return detail, name, cause_name


class NearRpcClient:
    """Minimal client for the node methods the wallet needs.

    Parameters
    ----------
    node_url:
        JSON-RPC endpoint, e.g. ``https://free.rpc.fastnear.com``.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport (tests pass an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        node_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.node_url = node_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._request_id = 0

    async def __aenter__(self) -> NearRpcClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: Any) -> Any:
        """Send one JSON-RPC request and return its ``result``."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": f"bond-credit-{self._request_id}",
            "method": method,
            "params": params,
        }
        try:
            resp = await self._client.post(self.node_url, json=payload)
        except httpx.TimeoutException as e:
            raise NearRpcError(f"RPC timeout calling {method}") from e
        except httpx.HTTPError as e:
            raise NearRpcError(f"RPC transport error calling {method}: {e}") from e

        if resp.status_code == 429:
            raise NearRpcError(f"RPC rate limit exceeded calling {method} (HTTP 429)")
        try:
            body = resp.json()
        except ValueError as e:
            raise NearRpcError(
                f"RPC HTTP {resp.status_code} returned a non-JSON body calling {method}"
            ) from e
        if "error" in body:
            message, name, cause = _error_message(body["error"])
            logger.debug(f"RPC {method} failed: {message}")
            raise NearRpcError(message, name=name, cause=cause, data=body["error"])

        result = body.get("result")
        # View queries report some failures inside the result.
        if isinstance(result, dict) and "error" in result and method == "query":
            raise NearRpcError(str(result["error"]), name="QUERY_ERROR", data=result)
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def view_account(self, account_id: str, finality: str = "final") -> dict:
        return await self.call("query", {
            "request_type": "view_account",
            "finality": finality,
            "account_id": account_id,
        })

    async def view_access_key(self, account_id: str, public_key: str, finality: str = "final") -> dict:
        return await self.call("query", {
            "request_type": "view_access_key",
            "finality": finality,
            "account_id": account_id,
            "public_key": public_key,
        })

    async def block(self, finality: str = "final") -> dict:
        return await self.call("block", {"finality": finality})

    async def gas_price(self, block_id: str | int | None = None) -> dict:
        return await self.call("gas_price", [block_id])

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def broadcast_tx_commit(self, signed_tx_base64: str) -> dict:
        """Submit a signed transaction and wait for its execution outcome."""
        return await self.call("broadcast_tx_commit", [signed_tx_base64])

    async def tx_status(self, tx_hash: str, sender_id: str) -> dict:
        return await self.call("tx", [tx_hash, sender_id])
