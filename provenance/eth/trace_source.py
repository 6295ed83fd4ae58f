"""
Transaction trace retrieval.

Provides:
- Web3TraceSource: one `trace_transaction` call against an HTTP RPC node
- JsonTraceSource: a saved `trace_transaction` response on disk

Neither retries. A failed fetch raises RpcError and the caller decides.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol

from pydantic import ValidationError
from web3 import Web3
from web3.types import RPCEndpoint

from provenance.errors import RpcError
from provenance.eth.metrics import Metrics
from provenance.models import TraceEntry

logger = logging.getLogger(__name__)

TRACE_METHOD = RPCEndpoint("trace_transaction")
METHOD_NOT_FOUND = -32601


class TraceSource(Protocol):
    def fetch_trace(self, tx_hash: str) -> List[TraceEntry]:
        ...


def parse_trace(result: Any) -> List[TraceEntry]:
    """
    Convert a `trace_transaction` result list into trace entries.

    Raises:
        RpcError: result is not a list of well-formed trace objects
    """
    if not isinstance(result, list):
        raise RpcError(f"malformed trace response: expected a list, got {type(result).__name__}")
    entries = []
    for i, item in enumerate(result):
        try:
            entries.append(TraceEntry.from_rpc(item))
        except (ValueError, ValidationError) as exc:
            raise RpcError(f"malformed trace entry #{i}: {exc}") from exc
    return entries


def _unwrap(response: Any, tx_hash: str) -> Any:
    """Pull `result` out of a JSON-RPC response object or raise on `error`."""
    if not isinstance(response, dict):
        raise RpcError(f"malformed JSON-RPC response: {type(response).__name__}")

    error = response.get("error")
    if error:
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message", "") if isinstance(error, dict) else str(error)
        if code == METHOD_NOT_FOUND or "not supported" in message or "does not exist" in message:
            raise RpcError(f"node does not support {TRACE_METHOD}: {message}")
        raise RpcError(f"{TRACE_METHOD} failed ({code}): {message}")

    if "result" not in response:
        raise RpcError("malformed JSON-RPC response: no result")
    result = response["result"]
    if result is None:
        raise RpcError(f"no trace for {tx_hash} (unknown transaction or pruned state)")
    return result


@dataclass
class Web3TraceSource:
    """Fetches full execution traces through web3's HTTP provider."""

    w3: Web3
    metrics: Metrics = field(default_factory=Metrics)

    @staticmethod
    def from_url(
        rpc_url: str,
        *,
        timeout: float = 30.0,
        metrics: Optional[Metrics] = None,
    ) -> Web3TraceSource:
        """
        Create a trace source for an RPC endpoint.

        Args:
            rpc_url: HTTP RPC endpoint, must expose the `trace_` namespace
            timeout: HTTP request timeout in seconds
            metrics: Optional metrics instance
        """
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        return Web3TraceSource(w3=w3, metrics=metrics or Metrics())

    def fetch_trace(self, tx_hash: str) -> List[TraceEntry]:
        """
        Fetch every trace entry of a transaction, in execution order.

        Raises:
            RpcError: transport failure, node error or malformed response
        """
        try:
            with self.metrics.timed("rpc_latency_ms"):
                response = self.w3.provider.make_request(TRACE_METHOD, [tx_hash])
        except Exception as exc:
            self.metrics.inc("rpc_errors_total")
            raise RpcError(f"{TRACE_METHOD} transport failure: {exc}") from exc

        try:
            entries = parse_trace(_unwrap(response, tx_hash))
        except RpcError:
            self.metrics.inc("rpc_errors_total")
            raise
        logger.info(f"Fetched {len(entries)} trace entries for {tx_hash}")
        return entries


@dataclass(frozen=True)
class JsonTraceSource:
    """
    Reads a saved trace, either the bare result list or the whole
    JSON-RPC response object.
    """

    path: Path

    def fetch_trace(self, tx_hash: str) -> List[TraceEntry]:
        try:
            payload = json.loads(Path(self.path).read_text(encoding="utf-8"))
        except OSError as exc:
            raise RpcError(f"cannot read trace file {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise RpcError(f"trace file {self.path} is not JSON: {exc}") from exc

        if isinstance(payload, dict):
            payload = _unwrap(payload, tx_hash)
        entries = parse_trace(payload)
        logger.info(f"Loaded {len(entries)} trace entries from {self.path}")
        return entries
