"""
Per-framework compilation of a checked-out project.

A toolchain recognises its project layout, installs what the project
needs, and emits the named contract's init code. The first toolchain
whose `detect` accepts the project is used.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Tuple

from provenance.build.tools import Toolbox, decode_output
from provenance.errors import BuildFailure, ToolchainError
from provenance.models import RawBytecode

logger = logging.getLogger(__name__)


def _empty_init(name: str) -> BuildFailure:
    return BuildFailure(f"contract {name} has no init code (abstract contract or interface?)")


class Toolchain:
    """Base class for project types."""

    name = "toolchain"

    def detect(self, project_dir: Path) -> bool:
        raise NotImplementedError

    def install(self, project_dir: Path, tools: Toolbox) -> None:
        """Fetch project-local dependencies. Runs before `compile`."""

    def compile(self, project_dir: Path, contract_name: str, tools: Toolbox) -> RawBytecode:
        raise NotImplementedError


class FoundryToolchain(Toolchain):
    """foundry.toml projects, compiled with `forge inspect`."""

    name = "foundry"

    def detect(self, project_dir: Path) -> bool:
        return (project_dir / "foundry.toml").exists()

    def install(self, project_dir: Path, tools: Toolbox) -> None:
        forge = tools.require("forge", "install Foundry dependencies")
        tools.run([forge, "install"], project_dir, "forge install")

    def compile(self, project_dir: Path, contract_name: str, tools: Toolbox) -> RawBytecode:
        forge = tools.require("forge", "compile the contract")
        out = tools.run(
            [forge, "inspect", "--force", contract_name, "bytecode"],
            project_dir,
            f"forge inspect {contract_name}",
        )
        return parse_forge_bytecode(decode_output(out, "forge inspect"), contract_name)


def parse_forge_bytecode(output: str, contract_name: str) -> RawBytecode:
    """
    Pick the bytecode out of `forge inspect ... bytecode` output.

    Compiler warnings may precede it; the bytecode is the last non-empty
    line, optionally JSON-quoted by older forge releases.

    Raises:
        ToolchainError: no 0x-prefixed value in the output
        BuildFailure: contract compiles to empty init code
    """
    lines = [ln.strip() for ln in output.splitlines() if ln.strip()]
    if not lines:
        raise ToolchainError(f"forge inspect printed nothing for {contract_name}")
    value = lines[-1].strip('"')
    if not value.startswith("0x"):
        raise ToolchainError(
            f"unexpected forge inspect output for {contract_name}: {value[:80]!r}"
        )
    code = RawBytecode.parse(value, source="build")
    if len(code) == 0:
        raise _empty_init(contract_name)
    return code


class HardhatToolchain(Toolchain):
    """hardhat.config.{js,ts,cjs} projects, compiled then read from artifacts/."""

    name = "hardhat"
    CONFIG_FILES = ("hardhat.config.js", "hardhat.config.ts", "hardhat.config.cjs")

    def detect(self, project_dir: Path) -> bool:
        return any((project_dir / f).exists() for f in self.CONFIG_FILES)

    def compile(self, project_dir: Path, contract_name: str, tools: Toolbox) -> RawBytecode:
        npx = tools.require("npx", "run hardhat")
        tools.run([npx, "hardhat", "compile", "--force"], project_dir, "hardhat compile")
        return read_hardhat_artifact(project_dir / "artifacts", contract_name)


def _artifact_candidates(artifacts: Path, contract_name: str) -> List[Path]:
    return sorted(
        p for p in artifacts.rglob(f"{contract_name}.json")
        if not p.name.endswith(".dbg.json") and "build-info" not in p.parts
    )


def read_hardhat_artifact(artifacts: Path, contract_name: str) -> RawBytecode:
    """
    Load the init code of `contract_name` from a hardhat artifacts tree.

    Raises:
        BuildFailure: contract missing, or defined in more than one source
        ToolchainError: artifact is not the expected JSON
    """
    found = _artifact_candidates(artifacts, contract_name)
    if not found:
        raise BuildFailure(f"contract {contract_name} not found in {artifacts}")
    if len(found) > 1:
        where = ", ".join(str(p.relative_to(artifacts)) for p in found)
        raise BuildFailure(f"contract name {contract_name} is ambiguous: {where}")

    try:
        artifact = json.loads(found[0].read_text(encoding="utf-8"))
        value = artifact["bytecode"]
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise ToolchainError(f"unreadable hardhat artifact {found[0]}: {exc}") from exc

    code = RawBytecode.parse(value, source="build")
    if len(code) == 0:
        raise _empty_init(contract_name)
    return code


DEFAULT_TOOLCHAINS: Tuple[Toolchain, ...] = (FoundryToolchain(), HardhatToolchain())


def detect_toolchain(project_dir: Path, toolchains=DEFAULT_TOOLCHAINS) -> Toolchain:
    """
    Raises:
        BuildFailure: no supported project manifest present
    """
    for chain in toolchains:
        if chain.detect(project_dir):
            logger.info(f"Detected {chain.name} project in {project_dir}")
            return chain
    raise BuildFailure(
        f"no supported build manifest in {project_dir} "
        f"(looked for foundry.toml, {', '.join(HardhatToolchain.CONFIG_FILES)})"
    )
