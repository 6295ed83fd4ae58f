"""
Metadata stripping for EVM bytecode.

Compilers append a CBOR-encoded metadata map (source hash, compiler
version) to the code they emit. It never executes, but it changes with
file paths and settings, so it has to go before two builds can be
compared byte for byte.

The marker that opens the map depends on the compiler version, so the
set of markers is a parameter. Truncation happens at the LAST byte-aligned
occurrence of any marker. A marker that happens to appear inside real
code is indistinguishable from the metadata start and over-truncates;
that is an accepted approximation of this heuristic.

Idempotence holds on NormalizedBytecode values, which pass through
unchanged. Re-parsing the normalized hex as raw input can truncate again
when an earlier marker survived the first pass.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple, Union

from provenance.errors import ConfigError
from provenance.models import NormalizedBytecode, RawBytecode, strip_0x

logger = logging.getLogger(__name__)

# a2 64 -> map(2) followed by a 4-char text key ("ipfs"/"solc"), solc >= 0.6
SOLC_CBOR_MARKER = "a264"

KNOWN_MARKERS: Dict[str, str] = {
    "solc-cbor": SOLC_CBOR_MARKER,
    "bzzr0": "a165627a7a7230",  # {"bzzr0": ...}, solc 0.4.x
    "bzzr1": "a265627a7a7231",  # {"bzzr1": ..., "solc": ...}, solc 0.5.x
}

DEFAULT_MARKERS: Tuple[str, ...] = (SOLC_CBOR_MARKER,)


def parse_marker(value: str) -> str:
    """
    Resolve a preset name or hex string to a canonical marker.

    Raises:
        ConfigError: empty, non-hex or odd-length marker
    """
    if value in KNOWN_MARKERS:
        return KNOWN_MARKERS[value]
    text = strip_0x(value.strip()).lower()
    if not text or len(text) % 2:
        raise ConfigError(f"metadata marker must be whole bytes of hex: {value!r}")
    try:
        bytes.fromhex(text)
    except ValueError:
        raise ConfigError(f"metadata marker is not hex: {value!r}") from None
    return text


def find_metadata(data: bytes, markers: Iterable[str]) -> Tuple[int, Optional[str]]:
    """Return (offset, marker) of the last marker occurrence, (-1, None) if none."""
    best, best_marker = -1, None
    for marker in markers:
        idx = data.rfind(bytes.fromhex(marker))
        if idx > best:
            best, best_marker = idx, marker
    return best, best_marker


def normalize(
    raw: Union[RawBytecode, NormalizedBytecode],
    markers: Iterable[str] = DEFAULT_MARKERS,
) -> NormalizedBytecode:
    """
    Strip the trailing metadata section.

    Already-normalized values are returned as-is, which makes the function
    idempotent even when a marker occurs more than once.
    """
    if isinstance(raw, NormalizedBytecode):
        return raw

    data = raw.to_bytes()
    idx, marker = find_metadata(data, markers)
    if idx < 0:
        logger.debug(f"No metadata marker in {raw.source} bytecode ({len(data)} bytes)")
        return NormalizedBytecode(raw.hex)

    logger.debug(
        f"Stripping {len(data) - idx} metadata bytes from {raw.source} bytecode "
        f"at offset {idx} (marker {marker})"
    )
    return NormalizedBytecode(data[:idx].hex(), marker=marker, stripped_bytes=len(data) - idx)
