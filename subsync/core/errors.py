from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for event-sync failures."""


class ConfigurationError(SyncError):
    """Required configuration is missing; raised before any loop starts."""


class RpcError(SyncError):
    """
    Ledger RPC fetch failed: transport error, non-2xx status,
    malformed JSON or a JSON-RPC `error` object.
    """

    def __init__(self, method: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{method}: {message}")
        self.method = method
        self.status_code = status_code
