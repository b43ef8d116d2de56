"""EVM JSON-RPC log source for one contract address."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from stfuel_tracker.chain.decoder import decode_log, to_int, unknown_event
from stfuel_tracker.errors import DecodeError
from stfuel_tracker.models.events import RawEvent

log = logging.getLogger(__name__)

_TIMESTAMP_CACHE_SIZE = 1024


class RpcError(Exception):
    """The node answered with a JSON-RPC error object."""


class JsonRpcLogSource:
    """Fetches and decodes a contract's logs over eth_getLogs.

    Block timestamps are looked up with eth_getBlockByNumber and kept in a
    small cache, since one block usually carries several logs.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: int = 30,
        retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._address = contract_address.lower()
        self._retries = max(1, retries)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10), transport=transport,
        )
        self._timestamps: dict[int, int] = {}
        self._request_id = 0

    async def _call(self, method: str, params: list[Any]) -> Any:
        last_exc: Exception | None = None
        for attempt in range(1, self._retries + 1):
            self._request_id += 1
            payload = {
                "jsonrpc": "2.0", "id": self._request_id,
                "method": method, "params": params,
            }
            try:
                resp = await self._client.post(self._rpc_url, json=payload)
                resp.raise_for_status()
                body = resp.json()
                if body.get("error"):
                    raise RpcError(f"{method}: {body['error']}")
                return body.get("result")
            except (httpx.HTTPError, RpcError) as exc:
                last_exc = exc
                log.warning("%s failed (attempt %d/%d): %s", method, attempt, self._retries, exc)
                if attempt < self._retries:
                    await asyncio.sleep(attempt)
        assert last_exc is not None
        raise last_exc

    async def latest_block(self) -> int:
        return to_int(await self._call("eth_blockNumber", []))

    async def block_timestamp(self, block_number: int) -> int:
        if (ts := self._timestamps.get(block_number)) is not None:
            return ts
        block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if block is None:
            raise RpcError(f"block {block_number} not found")
        ts = to_int(block["timestamp"])
        if len(self._timestamps) >= _TIMESTAMP_CACHE_SIZE:
            self._timestamps.pop(next(iter(self._timestamps)))
        self._timestamps[block_number] = ts
        return ts

    async def fetch(self, from_block: int, to_block: int) -> list[RawEvent]:
        logs = await self._call("eth_getLogs", [{
            "address": self._address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }]) or []

        events: list[RawEvent] = []
        for entry in logs:
            ts = await self.block_timestamp(to_int(entry["blockNumber"]))
            try:
                events.append(decode_log(entry, ts))
            except DecodeError as exc:
                log.error(
                    "Undecodable log in tx %s (log %s), recording as Unknown: %s",
                    entry.get("transactionHash"), entry.get("logIndex"), exc,
                )
                events.append(unknown_event(entry, ts))
        events.sort(key=lambda e: e.coordinate)

        if events:
            log.info(
                "Fetched %d events for %s in blocks %d-%d",
                len(events), self._address, from_block, to_block,
            )
        return events

    async def close(self) -> None:
        await self._client.aclose()
