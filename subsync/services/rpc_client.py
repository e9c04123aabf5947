"""
Ledger RPC client
=================

Minimal JSON-RPC 2.0 client for the two read calls the event sync needs:

  getLatestLedger -> {"result": {"sequence": N}}
  getEvents       -> {"result": {"events": [ContractEvent, ...]}}

Every failure mode (transport error, non-2xx, malformed JSON, JSON-RPC
`error` object) surfaces as RpcError. Retrying is the poll loop's job.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from subsync.core.errors import RpcError
from subsync.core.events import ContractEvent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class LedgerRpcClient:
    """Async HTTP client for the ledger's JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        contract_id: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._rpc_url = rpc_url
        self._contract_id = contract_id
        self._timeout = timeout
        self._transport = transport
        self._next_id = 0

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._next_id += 1
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": self._next_id, "method": method}
        if params is not None:
            body["params"] = params

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._rpc_url, json=body)
        except httpx.HTTPError as e:
            raise RpcError(method, f"transport error: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            raise RpcError(method, f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise RpcError(method, "malformed JSON response", status_code=resp.status_code) from e

        if not isinstance(data, dict):
            raise RpcError(method, "response is not a JSON object", status_code=resp.status_code)

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(method, message or "unknown RPC error", status_code=resp.status_code)

        result = data.get("result")
        if not isinstance(result, dict):
            raise RpcError(method, "missing result", status_code=resp.status_code)
        return result

    async def get_latest_ledger(self) -> int:
        result = await self._call("getLatestLedger")
        try:
            return int(result["sequence"])
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError("getLatestLedger", "missing or invalid sequence") from e

    async def get_events(self, start_ledger: int) -> List[ContractEvent]:
        result = await self._call(
            "getEvents",
            {
                "startLedger": start_ledger,
                "filters": [{"contractIds": [self._contract_id]}],
            },
        )
        raw_events = result.get("events") or []
        events: List[ContractEvent] = []
        for raw in raw_events:
            try:
                events.append(ContractEvent.from_rpc(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise RpcError("getEvents", f"malformed event: {raw!r}") from e
        logger.debug("Fetched events", extra={"start_ledger": start_ledger, "count": len(events)})
        return events
