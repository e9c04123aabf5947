import json

import httpx

from subsync.services.rpc_client import LedgerRpcClient

CONTRACT_ID = "CCONTRACT"
RPC_URL = "https://rpc.test"


def seed(session_factory, *rows):
    with session_factory() as s:
        s.add_all(rows)
        s.commit()


def rpc_event(event_type, ledger, value, tx_hash=None):
    return {
        "type": event_type,
        "ledger": ledger,
        "txHash": tx_hash or f"tx-{ledger}-{event_type}",
        "contractId": CONTRACT_ID,
        "topics": [],
        "value": value,
    }


class FakeLedger:
    """In-process JSON-RPC endpoint backed by httpx.MockTransport."""

    def __init__(self, latest=0, events=None):
        self.latest = latest
        self.events = list(events or [])
        self.calls = []
        self.fail_with = None  # httpx.Response to return, or Exception to raise, for every call

    def _reply(self, body, result):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body.get("id"), "result": result})

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)

        if isinstance(self.fail_with, Exception):
            raise self.fail_with
        if self.fail_with is not None:
            return self.fail_with

        if body["method"] == "getLatestLedger":
            return self._reply(body, {"sequence": self.latest})
        if body["method"] == "getEvents":
            start = body["params"]["startLedger"]
            return self._reply(body, {"events": [e for e in self.events if e["ledger"] >= start]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body.get("id"), "error": {"message": "method not found"}})

    def methods(self):
        return [c["method"] for c in self.calls]

    def get_events_starts(self):
        return [c["params"]["startLedger"] for c in self.calls if c["method"] == "getEvents"]

    def client(self) -> LedgerRpcClient:
        return LedgerRpcClient(RPC_URL, CONTRACT_ID, transport=httpx.MockTransport(self.handler))
