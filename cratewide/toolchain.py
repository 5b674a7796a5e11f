"""Management and use of Rust compiler toolchains."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .utils import CommandError, run_command

_log = logging.getLogger(__name__)

MAIN_TOOLCHAIN_NAME = "stable"
RUSTUP = "rustup"
RUSTUP_TOOLCHAIN_INSTALL_MASTER = "rustup-toolchain-install-master"


class ToolchainError(Exception):
    """Failure while managing a toolchain."""


class NotInstalledError(ToolchainError):
    """The toolchain is not installed in the workspace."""

    def __init__(self, message: str = "the toolchain is not installed") -> None:
        super().__init__(message)


class UnsupportedOperationError(ToolchainError):
    """The operation is not supported for this kind of toolchain."""

    def __init__(self, message: str = "unsupported operation on this toolchain") -> None:
        super().__init__(message)


class _RustupAction(enum.Enum):
    ADD = ("add", "adding")
    REMOVE = ("remove", "removing")

    @property
    def verb(self) -> str:
        return self.value[0]

    @property
    def gerund(self) -> str:
        return self.value[1]


class _RustupThing(enum.Enum):
    TARGET = "target"
    COMPONENT = "component"


@dataclass(frozen=True)
class DistToolchain:
    """A toolchain distributed through rustup."""

    name: str


@dataclass(frozen=True)
class CiToolchain:
    """A toolchain built by the compiler's continuous integration."""

    sha: str
    alt: bool = False


def _run(workspace: Any, binary: str, args: list[str], context: str) -> None:
    argv = [workspace.managed_binary(binary), *args]
    try:
        run_command(argv, env=workspace.command_env())
    except CommandError as error:
        raise ToolchainError(context) from error


@dataclass(frozen=True)
class Toolchain:
    """A compiler toolchain, either a dist toolchain or a CI artifact."""

    inner: DistToolchain | CiToolchain

    @staticmethod
    def dist(name: str) -> Toolchain:
        """Create a toolchain installable through rustup by ``name``."""
        return Toolchain(DistToolchain(name))

    @staticmethod
    def ci(sha: str, alt: bool = False) -> Toolchain:
        """Create a toolchain from the CI artifacts of the merge commit ``sha``."""
        return Toolchain(CiToolchain(sha, alt))

    @staticmethod
    def main() -> Toolchain:
        """The toolchain used to install tools."""
        return Toolchain.dist(MAIN_TOOLCHAIN_NAME)

    @staticmethod
    def from_dict(data: dict) -> Toolchain:
        """Build a toolchain from its tagged dictionary representation."""
        kind = data.get("type")
        if kind == "dist":
            name = data.get("name")
            if not isinstance(name, str):
                raise ValueError("dist toolchain requires a string 'name'")
            return Toolchain.dist(name)
        if kind == "ci":
            sha = data.get("sha")
            alt = data.get("alt")
            if not isinstance(sha, str) or not isinstance(alt, bool):
                raise ValueError("ci toolchain requires a string 'sha' and a boolean 'alt'")
            return Toolchain.ci(sha, alt)
        raise ValueError(f"unknown toolchain type: {kind!r}")

    def to_dict(self) -> dict:
        """Return the tagged dictionary representation of this toolchain."""
        if isinstance(self.inner, DistToolchain):
            return {"type": "dist", "name": self.inner.name}
        return {"type": "ci", "sha": self.inner.sha, "alt": self.inner.alt}

    def is_needed_by_rustwide(self) -> bool:
        """Whether this toolchain is the one used to install tools."""
        if isinstance(self.inner, DistToolchain):
            return self.inner.name.startswith(MAIN_TOOLCHAIN_NAME)
        return False

    def as_dist(self) -> DistToolchain | None:
        """The dist metadata, if this is a dist toolchain."""
        return self.inner if isinstance(self.inner, DistToolchain) else None

    def as_ci(self) -> CiToolchain | None:
        """The CI metadata, if this is a CI toolchain."""
        return self.inner if isinstance(self.inner, CiToolchain) else None

    def rustup_name(self) -> str:
        """The name rustup knows this toolchain by."""
        if isinstance(self.inner, DistToolchain):
            return self.inner.name
        return f"{self.inner.sha}-alt" if self.inner.alt else self.inner.sha

    def binary_args(self, name: str) -> list[str]:
        """The managed binary ``name`` followed by the toolchain selector."""
        return [name, f"+{self.rustup_name()}"]

    def install(self, workspace: Any) -> None:
        """Download and install the toolchain."""
        inner = self.inner
        if isinstance(inner, DistToolchain):
            _log.info("installing toolchain %s", inner.name)
            _run(
                workspace,
                RUSTUP,
                ["toolchain", "install", inner.name, "--profile", workspace.rustup_profile],
                f"unable to install toolchain {inner.name} via rustup",
            )
            return
        _log.info("installing toolchain %s", self.rustup_name())
        args = [inner.sha, "-c", "cargo"]
        if inner.alt:
            args.append("--alt")
        _run(
            workspace,
            RUSTUP_TOOLCHAIN_INSTALL_MASTER,
            args,
            f"unable to install toolchain {inner.sha} via rustup-toolchain-install-master",
        )

    def add_component(self, workspace: Any, name: str) -> None:
        """Download and install a component for the toolchain."""
        self._change(workspace, _RustupAction.ADD, _RustupThing.COMPONENT, name)

    def remove_component(self, workspace: Any, name: str) -> None:
        """Remove an installed component of the toolchain."""
        self._change(workspace, _RustupAction.REMOVE, _RustupThing.COMPONENT, name)

    def add_target(self, workspace: Any, name: str) -> None:
        """Download and install a target for the toolchain."""
        self._change(workspace, _RustupAction.ADD, _RustupThing.TARGET, name)

    def remove_target(self, workspace: Any, name: str) -> None:
        """Remove an installed target of the toolchain."""
        self._change(workspace, _RustupAction.REMOVE, _RustupThing.TARGET, name)

    def installed_targets(self, workspace: Any) -> list[str]:
        """List the targets installed for this dist toolchain."""
        return self._list(workspace, _RustupThing.TARGET)

    def uninstall(self, workspace: Any) -> None:
        """Remove the toolchain from the workspace."""
        name = self.rustup_name()
        _run(
            workspace,
            RUSTUP,
            ["toolchain", "uninstall", name],
            f"unable to uninstall toolchain {name} via rustup",
        )

    def _change(
        self, workspace: Any, action: _RustupAction, thing: _RustupThing, name: str
    ) -> None:
        toolchain_name = self.rustup_name()
        _log.info(
            "%s %s %s for toolchain %s", action.gerund, thing.value, name, toolchain_name
        )
        inner = self.inner
        if isinstance(inner, CiToolchain):
            if action is _RustupAction.REMOVE:
                raise ToolchainError(
                    f"removing {thing.value} on CI toolchains is not supported yet"
                )
            flag = "--targets" if thing is _RustupThing.TARGET else "--component"
            args = ["--alt"] if inner.alt else []
            # `-f` forces the install of a new component on an existing toolchain,
            # and `--` keeps the sha from being read as a target name.
            args += ["-f", flag, name, "--", inner.sha]
            _run(
                workspace,
                RUSTUP_TOOLCHAIN_INSTALL_MASTER,
                args,
                f"unable to {action.verb} {thing.value} {name} for CI toolchain "
                f"{toolchain_name} via rustup-toolchain-install-master",
            )
            return
        _run(
            workspace,
            RUSTUP,
            [thing.value, action.verb, "--toolchain", toolchain_name, name],
            f"unable to {action.verb} {thing.value} {name} for toolchain "
            f"{toolchain_name} via rustup",
        )

    def _list(self, workspace: Any, thing: _RustupThing) -> list[str]:
        dist = self.as_dist()
        if dist is None:
            raise UnsupportedOperationError()
        not_installed = False

        def watch(line: str) -> None:
            nonlocal not_installed
            if line.startswith("error: toolchain ") and line.endswith(" is not installed"):
                not_installed = True

        argv = [
            workspace.managed_binary(RUSTUP),
            thing.value,
            "list",
            "--installed",
            "--toolchain",
            dist.name,
        ]
        try:
            lines = run_command(
                argv, env=workspace.command_env(), on_line=watch, capture=True
            )
        except CommandError as error:
            if not_installed:
                raise NotInstalledError() from error
            raise ToolchainError(
                f"failed to read the list of installed {thing.value}s "
                f"for {dist.name} with rustup"
            ) from error
        return [line for line in lines if line]

    def __str__(self) -> str:
        return self.rustup_name()


def list_installed_toolchains(rustup_home: str | os.PathLike) -> list[Toolchain]:
    """List the toolchains present in a rustup home directory."""
    home = Path(rustup_home)
    update_hashes = home / "update-hashes"
    result: list[Toolchain] = []
    with os.scandir(home / "toolchains") as entries:
        for entry in sorted(entries, key=lambda e: e.name):
            name = entry.name
            # Installed toolchains have an update hash; linked ones are symlinks.
            if entry.is_symlink() or (update_hashes / name).exists():
                result.append(Toolchain.dist(name))
            elif name.endswith("-alt"):
                result.append(Toolchain.ci(name[: -len("-alt")], True))
            else:
                result.append(Toolchain.ci(name, False))
    return result