"""
Advisory opcode scan over verified init code.

A match proves the deployment came from the source; it says nothing about
whether that source can destroy itself or hand its storage to another
contract. These are flagged for the auditor, never used to classify.
"""

from __future__ import annotations

from typing import Dict, List, Tuple, Union

from provenance.models import NormalizedBytecode, RawBytecode

FLAGGED_OPCODES: Dict[int, str] = {
    0xF4: "DELEGATECALL",
    0xFF: "SELFDESTRUCT",
}


def scan_opcodes(code: Union[RawBytecode, NormalizedBytecode]) -> List[Tuple[int, str]]:
    """Return (offset, name) for each flagged opcode, skipping PUSH immediates."""
    data = code.to_bytes()
    found: List[Tuple[int, str]] = []
    i = 0
    while i < len(data):
        op = data[i]
        if 0x60 <= op <= 0x7F:
            # PUSH1 .. PUSH32
            i += 1 + (op - 0x5F)
            continue
        if op in FLAGGED_OPCODES:
            found.append((i, FLAGGED_OPCODES[op]))
        i += 1
    return found


def opcode_warnings(code: Union[RawBytecode, NormalizedBytecode]) -> Tuple[str, ...]:
    """Human-readable warnings, one per flagged opcode kind."""
    by_name: Dict[str, List[int]] = {}
    for offset, name in scan_opcodes(code):
        by_name.setdefault(name, []).append(offset)
    return tuple(
        f"{name} present in init code ({len(offsets)} occurrence(s), first at byte {offsets[0]})"
        for name, offsets in sorted(by_name.items())
    )
