"""
Value types flowing through a single verification run.

All of them are immutable. Nothing here is persisted or shared between
runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, Field, field_validator

from provenance.errors import MalformedBytecode

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
# solc leaves __$<34 hex chars>$__ where a library address must be linked
_PLACEHOLDER_RE = re.compile(r"__\$[0-9a-fA-F]{34}\$__")


def strip_0x(value: str) -> str:
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


@dataclass(frozen=True)
class RawBytecode:
    """
    Hex-encoded byte sequence of unknown provenance.

    `hex` is always lowercase and carries no 0x prefix, so two values that
    differ only by hex digit case compare equal.
    """

    hex: str
    source: str = field(default="unknown", compare=False)

    @classmethod
    def parse(cls, value: Union[str, bytes], source: str = "unknown") -> RawBytecode:
        """
        Validate and canonicalize a bytecode payload.

        Raises:
            MalformedBytecode: non-hex, truncated (odd length) or unlinked payload
        """
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value).hex(), source)
        if not isinstance(value, str):
            raise MalformedBytecode(
                f"{source} bytecode must be a hex string, got {type(value).__name__}"
            )

        text = strip_0x(value.strip())
        if _PLACEHOLDER_RE.search(text):
            raise MalformedBytecode(
                f"{source} bytecode contains unlinked library placeholders"
            )
        if not _HEX_RE.match(text):
            raise MalformedBytecode(f"{source} bytecode is not valid hex")
        if len(text) % 2:
            raise MalformedBytecode(
                f"{source} bytecode is truncated (odd number of hex digits: {len(text)})"
            )
        return cls(text.lower(), source)

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.hex)

    def __len__(self) -> int:
        return len(self.hex) // 2


@dataclass(frozen=True)
class NormalizedBytecode:
    """
    Bytecode with its trailing metadata section removed.

    Attributes:
        hex: lowercase hex of the retained prefix
        marker: metadata marker that triggered truncation, None if absent
        stripped_bytes: number of bytes removed from the tail
    """

    hex: str
    marker: Optional[str] = None
    stripped_bytes: int = 0

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.hex)

    def __len__(self) -> int:
        return len(self.hex) // 2


class ActionType(str, Enum):
    """Trace action kinds as reported by `trace_transaction`."""

    CALL = "call"
    CREATE = "create"
    SUICIDE = "suicide"
    REWARD = "reward"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: Any) -> ActionType:
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class TraceEntry(BaseModel):
    """One step of a transaction's execution trace."""

    action_type: ActionType
    result_present: bool = False
    created_address: Optional[str] = None
    init_code: Optional[str] = None  # raw hex, validated only when extracted
    trace_address: List[int] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("created_address")
    @classmethod
    def _checksum(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        if not is_address(v):
            raise ValueError(f"invalid created address: {v!r}")
        return to_checksum_address(v)

    @classmethod
    def from_rpc(cls, item: Dict[str, Any]) -> TraceEntry:
        """
        Build from one element of a `trace_transaction` result list.

        Raises:
            ValueError / pydantic.ValidationError: unexpected shape
        """
        if not isinstance(item, dict):
            raise ValueError(f"trace entry must be an object, got {type(item).__name__}")

        action_type = ActionType.from_wire(item.get("type"))
        action = item.get("action") or {}
        result = item.get("result")
        if not isinstance(action, dict):
            raise ValueError(f"trace action must be an object, got {type(action).__name__}")

        created: Optional[str] = None
        init: Optional[str] = None
        if action_type is ActionType.CREATE:
            init = action.get("init")
            if isinstance(result, dict):
                created = result.get("address")

        return cls(
            action_type=action_type,
            result_present=result is not None,
            created_address=created,
            init_code=init,
            trace_address=item.get("traceAddress") or [],
            error=item.get("error"),
        )


@dataclass(frozen=True)
class CreationRecord:
    """The single trace entry selected as the deployment of `target`."""

    entry: TraceEntry
    target: str

    def __post_init__(self) -> None:
        if self.entry.created_address != to_checksum_address(self.target):
            raise ValueError(
                f"creation record for {self.target} points at {self.entry.created_address}"
            )

    def init_code(self) -> RawBytecode:
        """
        Extract the init code executed by this creation.

        Raises:
            MalformedBytecode: init payload missing or not valid hex
        """
        if self.entry.init_code is None:
            raise MalformedBytecode("creation trace carries no init code", stage="locate")
        return RawBytecode.parse(self.entry.init_code, source="on-chain")


class VerificationResult(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class VerificationReport:
    """
    Terminal outcome of one verification run.

    Bytecode fields are populated as far as the pipeline got: a NOT_FOUND
    run never reaches the build, so both stay None.
    """

    result: VerificationResult
    transaction: str
    contract_address: str
    contract_name: str
    detail: str = ""
    on_chain: Optional[NormalizedBytecode] = None
    built: Optional[NormalizedBytecode] = None
    on_chain_codehash: str = ""
    built_codehash: str = ""
    first_difference: Optional[int] = None
    candidates: int = 0
    warnings: Tuple[str, ...] = ()
    metrics: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def matched(self) -> bool:
        return self.result is VerificationResult.MATCH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.value,
            "transaction": self.transaction,
            "contract_address": self.contract_address,
            "contract_name": self.contract_name,
            "detail": self.detail,
            "on_chain": self.on_chain.hex if self.on_chain else None,
            "built": self.built.hex if self.built else None,
            "on_chain_codehash": self.on_chain_codehash,
            "built_codehash": self.built_codehash,
            "first_difference": self.first_difference,
            "candidates": self.candidates,
            "warnings": list(self.warnings),
            "metrics": self.metrics,
        }
