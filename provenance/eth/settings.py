"""
Verification run configuration.

Built once (from CLI args or environment), validated, and passed
explicitly to each component. Nothing downstream reads os.environ.

Environment variables:
- PROVENANCE_TRANSACTION: deployment transaction hash
- PROVENANCE_CONTRACT_ADDRESS: contract to verify
- PROVENANCE_RPC_URL: HTTP RPC endpoint with `trace_transaction` support
- PROVENANCE_GIT_URL / PROVENANCE_COMMIT: source revision
- PROVENANCE_CONTRACT_NAME: contract to compile
- PROVENANCE_METADATA_MARKERS: comma-separated markers (default: solc-cbor)
- PROVENANCE_BUILD_TIMEOUT: seconds per external build command (default: none)
- PROVENANCE_KEEP_WORKDIR / PROVENANCE_CONCURRENT: booleans (default: false)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from provenance.errors import ConfigError
from provenance.normalize import DEFAULT_MARKERS, parse_marker

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _req(name: str) -> str:
    """Get required environment variable or raise."""
    v = os.getenv(name)
    if not v:
        raise ConfigError(f"Missing required env var: {name}")
    return v


def _opt(name: str, default: str) -> str:
    """Get optional environment variable with default."""
    return os.getenv(name, default)


def _opt_bool(name: str, default: bool) -> bool:
    """Parse boolean environment variable."""
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _opt_float(name: str) -> Optional[float]:
    v = os.getenv(name)
    if not v:
        return None
    try:
        return float(v)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {v!r}") from None


def _markers(values: Any) -> Tuple[str, ...]:
    if not values:
        return DEFAULT_MARKERS
    if isinstance(values, str):
        values = [v for v in values.split(",") if v.strip()]
    return tuple(dict.fromkeys(parse_marker(v) for v in values))


@dataclass(frozen=True)
class Settings:
    """Immutable, validated inputs of one verification run."""

    TRANSACTION: str
    CONTRACT_ADDRESS: str
    CONTRACT_NAME: str
    GIT_URL: str

    # One of these two provides the trace
    RPC_URL: str = ""
    TRACE_FILE: str = ""

    # Empty means "default branch head"
    COMMIT: Optional[str] = None

    METADATA_MARKERS: Tuple[str, ...] = DEFAULT_MARKERS
    BUILD_TIMEOUT: Optional[float] = None
    RPC_TIMEOUT: float = 30.0
    KEEP_WORKDIR: bool = False
    CONCURRENT: bool = False

    def __post_init__(self) -> None:
        if not _TX_HASH_RE.match(self.TRANSACTION or ""):
            raise ConfigError(
                f"transaction must be a 0x-prefixed 32-byte hash: {self.TRANSACTION!r}"
            )
        if not is_address(self.CONTRACT_ADDRESS or ""):
            raise ConfigError(
                f"contract address must be a 20-byte address: {self.CONTRACT_ADDRESS!r}"
            )
        if not (self.CONTRACT_NAME or "").strip():
            raise ConfigError("contract name is required")
        if not (self.GIT_URL or "").strip():
            raise ConfigError("git url is required")
        if bool(self.RPC_URL) == bool(self.TRACE_FILE):
            raise ConfigError("exactly one of rpc url or trace file is required")
        if not self.METADATA_MARKERS:
            raise ConfigError("at least one metadata marker is required")
        if self.BUILD_TIMEOUT is not None and self.BUILD_TIMEOUT <= 0:
            raise ConfigError("build timeout must be positive")

        # Canonical forms, so later comparisons never depend on input casing
        object.__setattr__(self, "TRANSACTION", self.TRANSACTION.lower())
        object.__setattr__(self, "CONTRACT_ADDRESS", to_checksum_address(self.CONTRACT_ADDRESS))
        object.__setattr__(self, "COMMIT", (self.COMMIT or "").strip() or None)
        object.__setattr__(self, "METADATA_MARKERS", _markers(self.METADATA_MARKERS))

    @staticmethod
    def load() -> Settings:
        """Load settings from environment variables."""
        return Settings(
            TRANSACTION=_req("PROVENANCE_TRANSACTION"),
            CONTRACT_ADDRESS=_req("PROVENANCE_CONTRACT_ADDRESS"),
            CONTRACT_NAME=_req("PROVENANCE_CONTRACT_NAME"),
            GIT_URL=_req("PROVENANCE_GIT_URL"),
            RPC_URL=_opt("PROVENANCE_RPC_URL", ""),
            TRACE_FILE=_opt("PROVENANCE_TRACE_FILE", ""),
            COMMIT=_opt("PROVENANCE_COMMIT", ""),
            METADATA_MARKERS=_markers(_opt("PROVENANCE_METADATA_MARKERS", "")),
            BUILD_TIMEOUT=_opt_float("PROVENANCE_BUILD_TIMEOUT"),
            KEEP_WORKDIR=_opt_bool("PROVENANCE_KEEP_WORKDIR", False),
            CONCURRENT=_opt_bool("PROVENANCE_CONCURRENT", False),
        )

    @staticmethod
    def from_args(args: Any) -> Settings:
        """
        Build settings from parsed CLI arguments.

        Any argument left unset falls back to its environment variable.
        """
        def pick(value: Any, env: str, default: str = "") -> Any:
            return value if value not in (None, "") else _opt(env, default)

        timeout = args.timeout
        if timeout is None:
            timeout = _opt_float("PROVENANCE_BUILD_TIMEOUT")
        # an explicit --rpc outranks a trace file from the environment
        trace_file = args.trace_file or ("" if args.rpc else _opt("PROVENANCE_TRACE_FILE", ""))

        return Settings(
            TRANSACTION=pick(args.transaction, "PROVENANCE_TRANSACTION"),
            CONTRACT_ADDRESS=pick(args.contract_address, "PROVENANCE_CONTRACT_ADDRESS"),
            CONTRACT_NAME=pick(args.contract_name, "PROVENANCE_CONTRACT_NAME"),
            GIT_URL=pick(args.git, "PROVENANCE_GIT_URL"),
            RPC_URL="" if trace_file else pick(args.rpc, "PROVENANCE_RPC_URL"),
            TRACE_FILE=trace_file,
            COMMIT=pick(args.commit, "PROVENANCE_COMMIT"),
            METADATA_MARKERS=_markers(
                args.metadata_marker or _opt("PROVENANCE_METADATA_MARKERS", "")
            ),
            BUILD_TIMEOUT=timeout,
            KEEP_WORKDIR=args.keep_workdir or _opt_bool("PROVENANCE_KEEP_WORKDIR", False),
            CONCURRENT=args.concurrent or _opt_bool("PROVENANCE_CONCURRENT", False),
        )
