"""Tools that a workspace installs and keeps up to date in its cargo home."""

from __future__ import annotations

import logging
import os
import platform
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from . import native
from .toolchain import MAIN_TOOLCHAIN_NAME, Toolchain
from .utils import CommandError, normalize_path, run_command

_log = logging.getLogger(__name__)

EXE_SUFFIX = ".exe" if os.name == "nt" else ""
RUSTUP_BASE_URL = "https://static.rust-lang.org/rustup/dist"

_ARCHITECTURES = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "i386": "i686",
    "i686": "i686",
    "x86": "i686",
}


def _host_target() -> str:
    """Best guess at the target triple of the machine running this process."""
    machine = platform.machine().lower()
    arch = _ARCHITECTURES.get(machine, machine)
    system = platform.system()
    if system == "Darwin":
        return f"{arch}-apple-darwin"
    if system == "Windows":
        return f"{arch}-pc-windows-msvc"
    if system == "FreeBSD":
        return f"{arch}-unknown-freebsd"
    return f"{arch}-unknown-linux-gnu"


class Tool(ABC):
    """A binary the workspace needs in its cargo home."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The name of the binary."""

    def binary_path(self, workspace: Any) -> Path:
        """Where the binary lives inside the workspace."""
        return normalize_path(workspace.cargo_home() / "bin" / f"{self.name}{EXE_SUFFIX}")

    def is_installed(self, workspace: Any) -> bool:
        """Whether the binary is present and executable."""
        path = self.binary_path(workspace)
        if not path.is_file():
            return False
        return native.is_executable(path)

    @abstractmethod
    def install(self, workspace: Any, fast_install: bool) -> None:
        """Install the tool in the workspace."""

    @abstractmethod
    def update(self, workspace: Any, fast_install: bool) -> None:
        """Update an already installed tool."""


@dataclass(frozen=True)
class BinaryCrate(Tool):
    """A tool installed with ``cargo install``."""

    crate_name: str
    binary: str
    cargo_subcommand: str | None = None

    @property
    def name(self) -> str:
        return self.binary

    def command_args(self, workspace: Any) -> list[str | Path]:
        """The argument prefix that runs this tool."""
        if self.cargo_subcommand is not None:
            return [workspace.managed_binary("cargo"), self.cargo_subcommand]
        return [workspace.managed_binary(self.binary)]

    def install(self, workspace: Any, fast_install: bool) -> None:
        cargo, *selector = Toolchain.main().binary_args("cargo")
        argv = [workspace.managed_binary(cargo), *selector, "install", self.crate_name]
        if fast_install:
            argv.append("--debug")
        run_command(argv, env=workspace.command_env())

    def update(self, workspace: Any, fast_install: bool) -> None:
        self.install(workspace, fast_install)


class Rustup(Tool):
    """The toolchain manager itself."""

    @property
    def name(self) -> str:
        return "rustup"

    def installer_url(self, host_target: str) -> str:
        """URL of the installer for the given target triple."""
        return f"{RUSTUP_BASE_URL}/{host_target}/rustup-init{EXE_SUFFIX}"

    def install(self, workspace: Any, fast_install: bool) -> None:
        workspace.cargo_home().mkdir(parents=True, exist_ok=True)
        workspace.rustup_home().mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory() as tmp:
            installer = Path(tmp) / f"rustup-init{EXE_SUFFIX}"
            workspace.download(self.installer_url(_host_target()), installer)
            native.make_executable(installer)
            argv = [
                installer,
                "-y",
                "--no-modify-path",
                "--default-toolchain",
                MAIN_TOOLCHAIN_NAME,
                "--profile",
                workspace.rustup_profile,
            ]
            env = {
                "RUSTUP_HOME": workspace.rustup_home(),
                "CARGO_HOME": workspace.cargo_home(),
            }
            try:
                run_command(argv, env=env)
            except CommandError as error:
                raise RuntimeError("unable to install rustup") from error

    def update(self, workspace: Any, fast_install: bool) -> None:
        rustup = workspace.managed_binary(self.name)
        env = workspace.command_env()
        try:
            run_command([rustup, "self", "update"], env=env)
        except CommandError as error:
            raise RuntimeError("failed to update rustup") from error
        try:
            run_command([rustup, "update", MAIN_TOOLCHAIN_NAME], env=env)
        except CommandError as error:
            raise RuntimeError(
                f"failed to update main toolchain {MAIN_TOOLCHAIN_NAME}"
            ) from error


RUSTUP = Rustup()

RUSTUP_TOOLCHAIN_INSTALL_MASTER = BinaryCrate(
    crate_name="rustup-toolchain-install-master",
    binary="rustup-toolchain-install-master",
)

GIT_CREDENTIAL_NULL = BinaryCrate(
    crate_name="git-credential-null",
    binary="git-credential-null",
)

INSTALLABLE_TOOLS: tuple[Tool, ...] = (
    RUSTUP,
    RUSTUP_TOOLCHAIN_INSTALL_MASTER,
    GIT_CREDENTIAL_NULL,
)


def install(workspace: Any, fast_install: bool) -> None:
    """Install every missing tool and update the ones already present."""
    for tool in INSTALLABLE_TOOLS:
        if tool.is_installed(workspace):
            _log.info("tool %s is installed, trying to update it", tool.name)
            tool.update(workspace, fast_install)
        else:
            _log.info("tool %s is missing, installing it", tool.name)
            tool.install(workspace, fast_install)
            if not tool.is_installed(workspace):
                raise RuntimeError(f"tool {tool.name} is still missing after install")