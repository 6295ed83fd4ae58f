"""
Test build-from-source.

Verifies:
- Checkout, install and compile run in order with the right tools
- Missing tools raise DependencyMissing
- Failed or timed-out commands raise BuildFailure
- Undecodable or unexpected output raises ToolchainError
- The temporary checkout is removed on success and on failure
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from helpers import BUILT_INIT
from provenance.build.project import ProjectBuilder, SourceRef, install_packages
from provenance.build.toolchains import HardhatToolchain, parse_forge_bytecode, read_hardhat_artifact
from provenance.build.tools import Toolbox
from provenance.errors import BuildFailure, DependencyMissing, MalformedBytecode, ToolchainError

SOURCE = SourceRef("https://example.com/token.git", "abc123")


class FakeRunner:
    """
    Stands in for subprocess.run.

    `git clone` materializes `files` in the destination; other commands
    answer from `outputs` keyed by the tool's sub-command, or raise the
    matching exception from `errors`.
    """

    def __init__(self, files=None, outputs=None, fail=None, timeout_on=None, errors=None):
        self.files = files or {}
        self.outputs = outputs or {}
        self.fail = fail or {}
        self.timeout_on = timeout_on
        self.errors = errors or {}
        self.commands = []

    def __call__(self, argv, cwd=None, capture_output=False, timeout=None):
        tool, sub = Path(argv[0]).name, argv[1]
        self.commands.append((tool, sub))
        if (tool, sub) == self.timeout_on:
            raise subprocess.TimeoutExpired(argv, timeout)
        if (tool, sub) in self.errors:
            raise self.errors[(tool, sub)]
        if (tool, sub) in self.fail:
            return subprocess.CompletedProcess(argv, 1, b"", self.fail[(tool, sub)])
        if (tool, sub) == ("git", "clone"):
            dest = Path(argv[3])
            dest.mkdir(parents=True)
            for name, content in self.files.items():
                p = dest / name
                p.parent.mkdir(parents=True, exist_ok=True)
                p.write_text(content)
        return subprocess.CompletedProcess(argv, 0, self.outputs.get((tool, sub), b""), b"")


def which_from(*installed):
    return lambda tool: f"/usr/bin/{tool}" if tool in installed else None


def _builder(tmp_path, runner, installed=("git", "forge", "yarn", "npm", "npx")):
    root = tmp_path / "work"
    root.mkdir()
    tools = Toolbox(which=which_from(*installed), runner=runner)
    return ProjectBuilder(tools=tools, workdir_root=root), root


def test_foundry_build_runs_steps_in_order(tmp_path):
    runner = FakeRunner(
        files={"foundry.toml": "[profile.default]\n", "package.json": "{}"},
        outputs={("forge", "inspect"): (BUILT_INIT + "\n").encode()},
    )
    builder, root = _builder(tmp_path, runner)

    code = builder.build(SOURCE, "Token")

    assert code.hex == BUILT_INIT[2:]
    assert code.source == "build"
    assert runner.commands == [
        ("git", "clone"),
        ("git", "checkout"),
        ("yarn", "install"),
        ("forge", "install"),
        ("forge", "inspect"),
    ]
    assert list(root.iterdir()) == []


def test_no_commit_skips_checkout(tmp_path):
    runner = FakeRunner(
        files={"foundry.toml": ""},
        outputs={("forge", "inspect"): BUILT_INIT.encode()},
    )
    builder, _ = _builder(tmp_path, runner)
    builder.build(SourceRef("https://example.com/token.git"), "Token")
    assert ("git", "checkout") not in runner.commands


def test_npm_used_when_yarn_missing(tmp_path):
    runner = FakeRunner(files={"package.json": "{}"})
    project = tmp_path / "p"
    project.mkdir()
    (project / "package.json").write_text("{}")
    install_packages(project, Toolbox(which=which_from("npm"), runner=runner))
    assert runner.commands == [("npm", "install")]


def test_package_manager_missing(tmp_path):
    project = tmp_path / "p"
    project.mkdir()
    (project / "package.json").write_text("{}")
    with pytest.raises(DependencyMissing, match="yarn"):
        install_packages(project, Toolbox(which=which_from(), runner=FakeRunner()))


def test_git_missing_is_dependency_missing(tmp_path):
    builder, root = _builder(tmp_path, FakeRunner(), installed=("forge",))
    with pytest.raises(DependencyMissing, match="git"):
        builder.build(SOURCE, "Token")
    assert list(root.iterdir()) == []


def test_forge_missing_is_dependency_missing(tmp_path):
    runner = FakeRunner(files={"foundry.toml": ""})
    builder, root = _builder(tmp_path, runner, installed=("git",))
    with pytest.raises(DependencyMissing, match="forge"):
        builder.build(SOURCE, "Token")
    assert list(root.iterdir()) == []


def test_compile_error_is_build_failure_and_cleans_up(tmp_path):
    runner = FakeRunner(
        files={"foundry.toml": ""},
        fail={("forge", "inspect"): b"Error: Could not find artifact `Token`"},
    )
    builder, root = _builder(tmp_path, runner)
    with pytest.raises(BuildFailure, match="Could not find artifact"):
        builder.build(SOURCE, "Token")
    assert list(root.iterdir()) == []


def test_clone_failure_is_build_failure(tmp_path):
    runner = FakeRunner(fail={("git", "clone"): b"fatal: repository not found"})
    builder, _ = _builder(tmp_path, runner)
    with pytest.raises(BuildFailure, match="repository not found"):
        builder.build(SOURCE, "Token")


def test_timeout_is_build_failure(tmp_path):
    runner = FakeRunner(files={"foundry.toml": ""}, timeout_on=("forge", "install"))
    builder, root = _builder(tmp_path, runner)
    builder.tools.timeout = 5
    with pytest.raises(BuildFailure, match="timed out"):
        builder.build(SOURCE, "Token")
    assert list(root.iterdir()) == []


def test_permission_denied_is_dependency_missing(tmp_path):
    runner = FakeRunner(
        files={"foundry.toml": ""},
        errors={("forge", "install"): PermissionError(13, "Permission denied")},
    )
    builder, root = _builder(tmp_path, runner)
    with pytest.raises(DependencyMissing, match="could not be executed"):
        builder.build(SOURCE, "Token")
    assert list(root.iterdir()) == []


def test_spawn_os_error_is_build_failure(tmp_path):
    runner = FakeRunner(
        files={"foundry.toml": ""},
        errors={("forge", "inspect"): OSError(7, "Argument list too long")},
    )
    builder, root = _builder(tmp_path, runner)
    with pytest.raises(BuildFailure, match="could not be started"):
        builder.build(SOURCE, "Token")
    assert list(root.iterdir()) == []


@pytest.mark.parametrize("kind", ["missing", "file"])
def test_unusable_workdir_root_is_build_failure(tmp_path, kind):
    root = tmp_path / "work"
    if kind == "file":
        root.write_text("not a directory")
    tools = Toolbox(which=which_from("git", "forge"), runner=FakeRunner())
    builder = ProjectBuilder(tools=tools, workdir_root=root)
    with pytest.raises(BuildFailure, match="cannot create build directory"):
        builder.build(SOURCE, "Token")


def test_interrupt_during_compile_cleans_up(tmp_path):
    runner = FakeRunner(
        files={"foundry.toml": ""},
        errors={("forge", "inspect"): KeyboardInterrupt()},
    )
    builder, root = _builder(tmp_path, runner)
    with pytest.raises(KeyboardInterrupt):
        builder.build(SOURCE, "Token")
    assert list(root.iterdir()) == []


def test_unknown_project_layout(tmp_path):
    runner = FakeRunner(files={"README.md": "hi"})
    builder, _ = _builder(tmp_path, runner)
    with pytest.raises(BuildFailure, match="no supported build manifest"):
        builder.build(SOURCE, "Token")


def test_invalid_utf8_output_is_toolchain_error(tmp_path):
    runner = FakeRunner(files={"foundry.toml": ""}, outputs={("forge", "inspect"): b"\xff\xfe0x60"})
    builder, _ = _builder(tmp_path, runner)
    with pytest.raises(ToolchainError, match="UTF-8"):
        builder.build(SOURCE, "Token")


def test_keep_workdir(tmp_path):
    runner = FakeRunner(files={"foundry.toml": ""}, outputs={("forge", "inspect"): BUILT_INIT.encode()})
    builder, root = _builder(tmp_path, runner)
    builder.keep_workdir = True
    builder.build(SOURCE, "Token")
    assert len(list(root.iterdir())) == 1


def test_parse_forge_bytecode_variants():
    assert parse_forge_bytecode("Compiling...\nWarning: x\n0x6001\n", "T").hex == "6001"
    assert parse_forge_bytecode('"0x6001"', "T").hex == "6001"
    with pytest.raises(ToolchainError):
        parse_forge_bytecode("", "T")
    with pytest.raises(ToolchainError):
        parse_forge_bytecode("Error: something", "T")
    with pytest.raises(BuildFailure, match="no init code"):
        parse_forge_bytecode("0x", "T")
    with pytest.raises(MalformedBytecode):
        parse_forge_bytecode("0x600", "T")


def _artifact(root: Path, source: str, name: str, bytecode) -> None:
    d = root / "contracts" / source
    d.mkdir(parents=True, exist_ok=True)
    (d / f"{name}.json").write_text(json.dumps({"contractName": name, "bytecode": bytecode}))
    (d / f"{name}.dbg.json").write_text("{}")


def test_hardhat_artifact_lookup(tmp_path):
    _artifact(tmp_path, "Token.sol", "Token", "0x6001")
    assert read_hardhat_artifact(tmp_path, "Token").hex == "6001"

    with pytest.raises(BuildFailure, match="not found"):
        read_hardhat_artifact(tmp_path, "Missing")

    _artifact(tmp_path, "Other.sol", "Token", "0x6002")
    with pytest.raises(BuildFailure, match="ambiguous"):
        read_hardhat_artifact(tmp_path, "Token")


def test_hardhat_artifact_bad_json(tmp_path):
    d = tmp_path / "contracts" / "Token.sol"
    d.mkdir(parents=True)
    (d / "Token.json").write_text("{}")
    with pytest.raises(ToolchainError):
        read_hardhat_artifact(tmp_path, "Token")


def test_hardhat_project_build(tmp_path):
    runner = FakeRunner(files={"hardhat.config.js": "module.exports = {}", "package.json": "{}"})
    builder, _ = _builder(tmp_path, runner)
    builder.toolchains = (HardhatToolchain(),)

    def compile_and_write(argv, cwd=None, capture_output=False, timeout=None):
        if argv[1:3] == ["hardhat", "compile"]:
            _artifact(Path(cwd) / "artifacts", "Token.sol", "Token", BUILT_INIT)
        return runner(argv, cwd, capture_output, timeout)

    builder.tools.runner = compile_and_write
    code = builder.build(SOURCE, "Token")
    assert code.hex == BUILT_INIT[2:]
    assert ("npx", "hardhat") in runner.commands
