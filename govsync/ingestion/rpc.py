"""Minimal async JSON-RPC client for EVM nodes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from govsync.core.errors import DecodeError, NotYetMined, UpstreamRateLimited, UpstreamUnavailable
from govsync.core.logging import get_logger

log = get_logger("ingestion.rpc")

# Error codes nodes and hosted providers use for "slow down" / "range too large"
RATE_LIMIT_CODES = {-32005, 429}


class RPCClient:
    """One JSON-RPC endpoint. Transport and protocol failures surface as ``FetchError`` subclasses.

    No retry is done here: a failed call fails the whole scan, which backs the
    source's rate off and is retried on a later cycle.
    """

    def __init__(self, url: str, timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._id = 1

    async def __aenter__(self) -> "RPCClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        self._id += 1

        try:
            resp = await self._client.post(self.url, json=payload)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(f"{method} timed out") from exc
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(f"{method} transport error: {exc}") from exc

        if resp.status_code == 429:
            raise UpstreamRateLimited(f"{method} rate limited by node")
        if resp.status_code >= 400:
            raise UpstreamUnavailable(f"{method} failed with HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise DecodeError(f"{method} returned non-JSON body") from exc

        if not isinstance(data, dict):
            raise DecodeError(f"{method} returned unexpected payload: {data!r}")

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            if code in RATE_LIMIT_CODES or "limit" in (message or "").lower():
                raise UpstreamRateLimited(f"{method}: {message}")
            raise UpstreamUnavailable(f"{method}: {message}")

        return data.get("result")

    async def block_number(self) -> int:
        result = await self.call("eth_blockNumber", [])
        return _to_int(result, "eth_blockNumber")

    async def get_block(self, number: int) -> Dict[str, Any]:
        """Block header. Raises ``NotYetMined`` when the node does not have it."""
        result = await self.call("eth_getBlockByNumber", [hex(number), False])
        if result is None:
            raise NotYetMined(number)
        return result

    async def block_timestamp(self, number: int) -> int:
        block = await self.get_block(number)
        return _to_int(block.get("timestamp"), "block.timestamp")

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: Optional[str] = None,
        topics: Optional[List[Any]] = None,
    ) -> List[Dict[str, Any]]:
        f: Dict[str, Any] = {"fromBlock": hex(from_block), "toBlock": hex(to_block)}
        if address:
            f["address"] = address
        if topics:
            f["topics"] = topics
        result = await self.call("eth_getLogs", [f])
        return result or []

    async def eth_call(self, to: str, data: str, block: Optional[int] = None) -> str:
        tag = hex(block) if block is not None else "latest"
        result = await self.call("eth_call", [{"to": to, "data": data}, tag])
        if not isinstance(result, str):
            raise DecodeError(f"eth_call to {to} returned {result!r}")
        return result


def _to_int(value: Any, what: str) -> int:
    try:
        return int(value, 16) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"bad {what}: {value!r}") from exc
