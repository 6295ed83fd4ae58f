"""
Typed failures for the verification pipeline.

Every stage either returns a value or raises one of these. Nothing logs
an anomaly and carries on with degraded data.
"""

from __future__ import annotations

from typing import List, Sequence


class ProvenanceError(RuntimeError):
    """Base error. `stage` names where it happened, `code` is stable for reports."""

    stage = "pipeline"
    code = "PROVENANCE_ERROR"

    def __init__(self, message: str, *, stage: str = "") -> None:
        super().__init__(message)
        if stage:
            self.stage = stage

    def __str__(self) -> str:
        return f"{self.code} {super().__str__()}"


class ConfigError(ProvenanceError):
    stage = "config"
    code = "INVALID_CONFIG"


class RpcError(ProvenanceError):
    """Transport failure, JSON-RPC error or malformed trace response."""

    stage = "trace"
    code = "RPC_ERROR"


class CreationNotFound(ProvenanceError):
    stage = "locate"
    code = "NOT_FOUND"


class AmbiguousCreation(ProvenanceError):
    stage = "locate"
    code = "AMBIGUOUS"

    def __init__(self, message: str, *, count: int) -> None:
        super().__init__(message)
        self.count = count


class DependencyMissing(ProvenanceError):
    """A required external tool (git, forge, yarn, npm...) is not installed."""

    stage = "build"
    code = "DEPENDENCY_MISSING"


class BuildFailure(ProvenanceError):
    stage = "build"
    code = "BUILD_FAILURE"


class ToolchainError(ProvenanceError):
    """The build tool ran but its output is not what we expect."""

    stage = "build"
    code = "TOOLCHAIN_ERROR"


class MalformedBytecode(ProvenanceError):
    stage = "normalize"
    code = "MALFORMED_BYTECODE"


class StageFailures(ProvenanceError):
    """Both concurrent branches failed; each failure is kept."""

    code = "STAGE_FAILURES"

    def __init__(self, failures: Sequence[ProvenanceError]) -> None:
        self.failures: List[ProvenanceError] = list(failures)
        summary = "; ".join(f"{f.stage}: {f}" for f in self.failures)
        super().__init__(summary)
