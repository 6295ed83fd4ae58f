"""Shared builders for trace fixtures and bytecode samples."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from provenance.models import RawBytecode, TraceEntry

TX = "0x" + "ab" * 32
TARGET = "0x" + "11" * 20
OTHER = "0x" + "22" * 20

PREFIX = "6080604052348015600f57600080fd5b50603f80601d6000396000f3fe"
METADATA_A = "a2646970667358221220" + "aa" * 32 + "64736f6c63430008140033"
METADATA_B = "a2646970667358221220" + "bb" * 32 + "64736f6c63430008140033"
CTOR_ARGS = "00" * 31 + "2a"

ONCHAIN_INIT = "0x" + PREFIX + METADATA_A + CTOR_ARGS
BUILT_INIT = "0x" + PREFIX + METADATA_B


def create_item(
    address: Optional[str],
    init: str = ONCHAIN_INIT,
    *,
    trace_address: Optional[List[int]] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    """One `trace_transaction` create entry, as a node returns it."""
    item: Dict[str, Any] = {
        "action": {"from": OTHER, "gas": "0x1", "init": init, "value": "0x0"},
        "result": {"address": address, "code": "0x00", "gasUsed": "0x1"} if address else None,
        "subtraces": 0,
        "traceAddress": trace_address or [],
        "type": "create",
    }
    if error:
        item["error"] = error
    return item


def call_item(to: str = OTHER) -> Dict[str, Any]:
    return {
        "action": {"callType": "call", "from": OTHER, "to": to, "input": "0x", "gas": "0x1", "value": "0x0"},
        "result": {"gasUsed": "0x0", "output": "0x"},
        "subtraces": 1,
        "traceAddress": [],
        "type": "call",
    }


def entries(*items: Dict[str, Any]) -> List[TraceEntry]:
    return [TraceEntry.from_rpc(i) for i in items]


class FakeTraceSource:
    """Trace source returning canned entries, or raising."""

    def __init__(self, items=(), exc: Optional[Exception] = None):
        self._items = list(items)
        self._exc = exc
        self.calls: List[str] = []

    def fetch_trace(self, tx_hash: str):
        self.calls.append(tx_hash)
        if self._exc:
            raise self._exc
        return entries(*self._items)


class FakeBuilder:
    """Build provider returning fixed bytecode, or raising."""

    def __init__(self, code: str = BUILT_INIT, exc: Optional[Exception] = None):
        self._code = code
        self._exc = exc
        self.calls: list = []

    def build(self, source, contract_name):
        self.calls.append((source, contract_name))
        if self._exc:
            raise self._exc
        return RawBytecode.parse(self._code, source="build")
