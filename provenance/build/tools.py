"""
External process invocation for the build stage.

Every shell-out goes through a Toolbox so failures map onto the build
error taxonomy, and so tests can swap in a fake.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from provenance.errors import BuildFailure, DependencyMissing, ToolchainError

logger = logging.getLogger(__name__)

# Characters of stderr kept in error messages
STDERR_TAIL = 2000


def _tail(data: bytes) -> str:
    text = data.decode("utf-8", errors="replace").strip()
    return text[-STDERR_TAIL:]


@dataclass
class Toolbox:
    """Locates and runs external tools with an optional per-command timeout."""

    timeout: Optional[float] = None
    which: Callable[[str], Optional[str]] = shutil.which
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run

    def has(self, tool: str) -> bool:
        return self.which(tool) is not None

    def require(self, tool: str, why: str) -> str:
        """
        Resolve a tool on PATH.

        Raises:
            DependencyMissing: tool is not installed
        """
        path = self.which(tool)
        if path is None:
            raise DependencyMissing(f"`{tool}` is required to {why} but was not found on PATH")
        return path

    def run(self, cmd: Sequence[str], cwd: Path, what: str) -> bytes:
        """
        Run a command to completion and return its raw stdout.

        Raises:
            DependencyMissing: executable missing or not executable
            BuildFailure: non-zero exit, timeout or OS-level spawn failure
        """
        argv: List[str] = list(cmd)
        logger.info(f"Running {' '.join(argv)} in {cwd}")
        try:
            proc = self.runner(
                argv,
                cwd=str(cwd),
                capture_output=True,
                timeout=self.timeout,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise DependencyMissing(f"`{argv[0]}` could not be executed: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise BuildFailure(f"{what} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise BuildFailure(f"{what} could not be started: {exc}") from exc

        if proc.returncode != 0:
            raise BuildFailure(f"{what} failed (exit {proc.returncode}): {_tail(proc.stderr or b'')}")
        return proc.stdout or b""


def decode_output(data: bytes, what: str) -> str:
    """
    Decode tool output as UTF-8.

    Raises:
        ToolchainError: output is not valid UTF-8
    """
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ToolchainError(f"{what} produced non UTF-8 output: {exc}") from exc
