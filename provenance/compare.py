"""
Exact-match comparison of on-chain and compiled init code.

No fuzzy scoring: either the normalized bytes are identical or the
deployment is not proven to come from the source.
"""

from __future__ import annotations

from typing import Iterable, Optional, Union

from web3 import Web3

from provenance.models import NormalizedBytecode, RawBytecode, VerificationResult
from provenance.normalize import DEFAULT_MARKERS, normalize

Bytecode = Union[RawBytecode, NormalizedBytecode]


def codehash(code: Bytecode) -> str:
    """Keccak256 of the bytecode, 0x-prefixed."""
    return "0x" + Web3.keccak(code.to_bytes()).hex().removeprefix("0x")


def compare(
    on_chain: Bytecode,
    built: Bytecode,
    markers: Iterable[str] = DEFAULT_MARKERS,
) -> VerificationResult:
    """
    Classify a pair of init codes as MATCH or MISMATCH.

    Symmetric. Hex case never matters because both sides are canonicalized
    to lowercase on parse.
    """
    markers = tuple(markers)
    a = normalize(on_chain, markers)
    b = normalize(built, markers)
    if a.hex == b.hex:
        return VerificationResult.MATCH
    return VerificationResult.MISMATCH


def first_difference(a: Bytecode, b: Bytecode) -> Optional[int]:
    """Byte offset of the first difference, None when equal."""
    x, y = a.to_bytes(), b.to_bytes()
    for i, (p, q) in enumerate(zip(x, y)):
        if p != q:
            return i
    if len(x) != len(y):
        return min(len(x), len(y))
    return None
