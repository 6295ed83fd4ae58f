"""
Build-from-source: checkout, dependency install, compile.

Steps, in order:
1. git clone the repository into a fresh temporary directory
2. git checkout the pinned revision (if any)
3. install packages (yarn, else npm) when package.json exists
4. let the detected toolchain install its own dependencies
5. compile the contract and return its init code

The temporary directory is removed whether the build succeeds, fails or
is interrupted, unless `keep_workdir` is set.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Sequence

from provenance.build.toolchains import DEFAULT_TOOLCHAINS, Toolchain, detect_toolchain
from provenance.build.tools import Toolbox
from provenance.errors import BuildFailure, DependencyMissing
from provenance.models import RawBytecode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceRef:
    """Repository location plus optional revision pin."""

    git_url: str
    commit: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.git_url}@{self.commit}" if self.commit else self.git_url


class BuildProvider(Protocol):
    def build(self, source: SourceRef, contract_name: str) -> RawBytecode:
        ...


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", value)[:64] or "project"


def checkout(source: SourceRef, dest: Path, tools: Toolbox) -> Path:
    """Clone `source` into `dest` and pin the revision."""
    git = tools.require("git", "fetch the source revision")
    tools.run([git, "clone", source.git_url, str(dest)], dest.parent, f"git clone {source.git_url}")
    if source.commit:
        tools.run([git, "checkout", source.commit], dest, f"git checkout {source.commit}")
    return dest


def install_packages(project_dir: Path, tools: Toolbox) -> None:
    """Install node packages when the project declares any."""
    if not (project_dir / "package.json").exists():
        return
    for manager in ("yarn", "npm"):
        if tools.has(manager):
            tools.run([tools.require(manager, "install packages"), "install"], project_dir, f"{manager} install")
            return
    raise DependencyMissing("package.json present but neither `yarn` nor `npm` is installed")


@dataclass
class ProjectBuilder:
    """BuildProvider backed by git and the project's own build framework."""

    tools: Toolbox = field(default_factory=Toolbox)
    toolchains: Sequence[Toolchain] = DEFAULT_TOOLCHAINS
    keep_workdir: bool = False
    workdir_root: Optional[Path] = None

    def build(self, source: SourceRef, contract_name: str) -> RawBytecode:
        """
        Compile `contract_name` at `source` and return its init code.

        Raises:
            DependencyMissing: git or a build/package tool is not installed
            BuildFailure: clone, install or compile failed, or contract unknown
            ToolchainError: build tool output could not be interpreted
            MalformedBytecode: emitted bytecode is not valid hex
        """
        try:
            workdir = Path(
                tempfile.mkdtemp(
                    prefix=f"provenance-{_safe_name(contract_name)}-",
                    dir=str(self.workdir_root) if self.workdir_root else None,
                )
            )
        except OSError as exc:
            raise BuildFailure(f"cannot create build directory: {exc}") from exc
        try:
            project_dir = checkout(source, workdir / _safe_name(source.commit or "head"), self.tools)
            install_packages(project_dir, self.tools)
            chain = detect_toolchain(project_dir, self.toolchains)
            chain.install(project_dir, self.tools)
            code = chain.compile(project_dir, contract_name, self.tools)
            logger.info(f"Built {contract_name} from {source}: {len(code)} bytes of init code")
            return code
        finally:
            self._cleanup(workdir)

    def _cleanup(self, workdir: Path) -> None:
        if self.keep_workdir:
            logger.warning(f"Keeping build directory {workdir}")
            return
        try:
            shutil.rmtree(workdir)
            logger.debug(f"Removed build directory {workdir}")
        except OSError as e:
            logger.warning(f"Failed to remove build directory {workdir}: {e}")
