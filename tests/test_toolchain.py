import os
import sys
from pathlib import Path

import pytest

from cratewide.toolchain import (
    CiToolchain,
    DistToolchain,
    NotInstalledError,
    Toolchain,
    ToolchainError,
    UnsupportedOperationError,
    list_installed_toolchains,
)

SCRIPT = """#!{python}
import sys, pathlib
args = sys.argv[1:]
log = pathlib.Path(__file__).with_name("calls.log")
with log.open("a") as handle:
    handle.write(" ".join(args) + "\\n")
if "--toolchain" in args and args[args.index("--toolchain") + 1] == "missing":
    print("error: toolchain 'missing' is not installed", file=sys.stderr)
    sys.exit(1)
if "broken" in args:
    sys.exit(2)
if args[:2] == ["target", "list"]:
    print("x86_64-unknown-linux-gnu")
    print("")
    print("wasm32-unknown-unknown")
"""


class FakeWorkspace:
    rustup_profile = "minimal"

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.script = directory / "fake-tool"
        self.script.write_text(SCRIPT.format(python=sys.executable))
        os.chmod(self.script, 0o755)

    def managed_binary(self, name):
        return self.script

    def command_env(self):
        return {}

    def calls(self):
        log = self.directory / "calls.log"
        return log.read_text().splitlines() if log.exists() else []


@pytest.fixture
def workspace(tmp_path):
    return FakeWorkspace(tmp_path)


def test_dist_serde_repr():
    assert Toolchain.from_dict({"type": "dist", "name": "stable"}) == Toolchain.dist("stable")
    assert Toolchain.dist("stable").to_dict() == {"type": "dist", "name": "stable"}


def test_ci_serde_repr():
    assert Toolchain.from_dict({"type": "ci", "sha": "0000000", "alt": False}) == Toolchain.ci(
        "0000000", False
    )
    assert Toolchain.from_dict({"type": "ci", "sha": "0000000", "alt": True}) == Toolchain.ci(
        "0000000", True
    )


@pytest.mark.parametrize(
    "data", [{"type": "nope"}, {"type": "dist"}, {"type": "ci", "sha": "abc"}, {}]
)
def test_from_dict_rejects_invalid(data):
    with pytest.raises(ValueError):
        Toolchain.from_dict(data)


def test_is_needed_by_rustwide():
    assert Toolchain.dist("stable-x86_64-unknown-linux-gnu").is_needed_by_rustwide()
    assert not Toolchain.dist("nightly-x86_64-unknown-linux-gnu").is_needed_by_rustwide()
    assert not Toolchain.ci("abc", False).is_needed_by_rustwide()


def test_main_toolchain():
    assert Toolchain.main() == Toolchain.dist("stable")


def test_names_and_accessors():
    assert str(Toolchain.dist("beta")) == "beta"
    assert str(Toolchain.ci("abc", False)) == "abc"
    assert Toolchain.ci("abc", True).rustup_name() == "abc-alt"
    assert Toolchain.dist("beta").as_dist() == DistToolchain("beta")
    assert Toolchain.dist("beta").as_ci() is None
    assert Toolchain.ci("abc", True).as_ci() == CiToolchain("abc", True)
    assert Toolchain.ci("abc", True).as_dist() is None


def test_binary_args():
    assert Toolchain.dist("beta").binary_args("cargo") == ["cargo", "+beta"]
    assert Toolchain.ci("abc", True).binary_args("rustc") == ["rustc", "+abc-alt"]


def test_list_installed(tmp_path):
    dist_name = "stable-x86_64-unknown-linux-gnu"
    link_name = "stage1"
    ci_sha = "0" * 40
    toolchains = tmp_path / "toolchains"
    (toolchains / dist_name).mkdir(parents=True)
    (tmp_path / "update-hashes").mkdir()
    (tmp_path / "update-hashes" / dist_name).write_bytes(b"")
    target = tmp_path / "link-target"
    target.write_bytes(b"")
    os.symlink(target, toolchains / link_name)
    (toolchains / ci_sha).mkdir()
    (toolchains / f"{ci_sha}-alt").mkdir()

    result = list_installed_toolchains(tmp_path)

    assert Toolchain.dist(dist_name) in result
    assert Toolchain.dist(link_name) in result
    assert Toolchain.ci(ci_sha, False) in result
    assert Toolchain.ci(ci_sha, True) in result
    assert len(result) == 4


def test_installed_targets(workspace):
    targets = Toolchain.dist("stable").installed_targets(workspace)
    assert targets == ["x86_64-unknown-linux-gnu", "wasm32-unknown-unknown"]
    assert workspace.calls() == ["target list --installed --toolchain stable"]


def test_installed_targets_not_installed(workspace):
    with pytest.raises(NotInstalledError):
        Toolchain.dist("missing").installed_targets(workspace)


def test_installed_targets_other_failure(workspace):
    with pytest.raises(ToolchainError) as info:
        Toolchain.dist("broken").installed_targets(workspace)
    assert not isinstance(info.value, NotInstalledError)


def test_installed_targets_unsupported_on_ci(workspace):
    with pytest.raises(UnsupportedOperationError):
        Toolchain.ci("abc", False).installed_targets(workspace)


def test_dist_rustup_commands(workspace):
    toolchain = Toolchain.dist("nightly")
    toolchain.install(workspace)
    toolchain.add_target(workspace, "wasm32-unknown-unknown")
    toolchain.remove_component(workspace, "rust-src")
    toolchain.uninstall(workspace)
    assert workspace.calls() == [
        "toolchain install nightly --profile minimal",
        "target add --toolchain nightly wasm32-unknown-unknown",
        "component remove --toolchain nightly rust-src",
        "toolchain uninstall nightly",
    ]


def test_ci_commands(workspace):
    toolchain = Toolchain.ci("abc", True)
    toolchain.install(workspace)
    toolchain.add_component(workspace, "rust-src")
    assert workspace.calls() == [
        "abc -c cargo --alt",
        "--alt -f --component rust-src -- abc",
    ]


def test_ci_remove_not_supported(workspace):
    with pytest.raises(ToolchainError, match="not supported"):
        Toolchain.ci("abc", False).remove_target(workspace, "x")
    assert workspace.calls() == []


def test_failed_command_raises(workspace):
    with pytest.raises(ToolchainError, match="unable to add target broken"):
        Toolchain.dist("stable").add_target(workspace, "broken")