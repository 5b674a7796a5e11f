"""The directory holding all state and caches used for builds."""

from __future__ import annotations

import logging
import os
import shutil
import urllib.request
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from . import tools
from .toolchain import Toolchain, list_installed_toolchains
from .utils import CommandError, file_lock, remove_dir_all, run_command

_log = logging.getLogger(__name__)

if os.name == "nt":
    DEFAULT_SANDBOX_IMAGE = "rustops/crates-build-env-windows"
else:
    DEFAULT_SANDBOX_IMAGE = "ghcr.io/rust-lang/crates-build-env/linux"

DEFAULT_COMMAND_TIMEOUT: timedelta | None = timedelta(seconds=15 * 60)
DEFAULT_COMMAND_NO_OUTPUT_TIMEOUT: timedelta | None = None
DEFAULT_RUSTUP_PROFILE = "minimal"


@dataclass
class Workspace:
    """Directory on the filesystem containing state and caches."""

    path: Path
    user_agent: str = ""
    sandbox_image: str = DEFAULT_SANDBOX_IMAGE
    command_timeout: timedelta | None = DEFAULT_COMMAND_TIMEOUT
    command_no_output_timeout: timedelta | None = DEFAULT_COMMAND_NO_OUTPUT_TIMEOUT
    fetch_registry_index_during_builds: bool = True
    rustup_profile: str = DEFAULT_RUSTUP_PROFILE

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    def cargo_home(self) -> Path:
        return self.path / "cargo-home"

    def rustup_home(self) -> Path:
        return self.path / "rustup-home"

    def cache_dir(self) -> Path:
        return self.path / "cache"

    def builds_dir(self) -> Path:
        return self.path / "builds"

    def managed_binary(self, name: str) -> Path:
        """Path of a binary installed in the workspace's cargo home."""
        return self.cargo_home() / "bin" / f"{name}{tools.EXE_SUFFIX}"

    def command_env(self) -> dict[str, Path]:
        """Environment variables for running managed binaries."""
        return {"CARGO_HOME": self.cargo_home(), "RUSTUP_HOME": self.rustup_home()}

    def download(self, url: str, dest: str | os.PathLike) -> None:
        """Fetch ``url`` into ``dest``, raising on an error status."""
        request = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        with urllib.request.urlopen(request) as response, open(dest, "wb") as out:
            shutil.copyfileobj(response, out)

    def purge_all_build_dirs(self) -> None:
        """Remove the contents of every build directory."""
        builds = self.builds_dir()
        if builds.exists():
            remove_dir_all(builds)

    def purge_all_caches(self) -> None:
        """Remove the contents of the caches in the workspace."""
        registry = self.cargo_home() / "registry"
        paths = [
            self.cache_dir(),
            self.cargo_home() / "git",
            registry / "src",
            registry / "cache",
        ]
        with os.scandir(registry / "index") as entries:
            paths.extend(Path(e.path) / ".cache" for e in entries if e.is_dir())
        for path in paths:
            if path.exists():
                remove_dir_all(path)

    def installed_toolchains(self) -> list[Toolchain]:
        """Every toolchain present in the workspace."""
        return list_installed_toolchains(self.rustup_home())

    def _init(self, fast_init: bool) -> None:
        _log.info("installing tools required by rustwide")
        tools.install(self, fast_init)
        if not self.fetch_registry_index_during_builds:
            _log.info("updating the local crates.io registry clone")
            self._update_cratesio_registry()

    def _update_cratesio_registry(self) -> None:
        # Installing any crate refreshes the registry; the result does not matter.
        cargo, *selector = Toolchain.main().binary_args("cargo")
        argv = [self.managed_binary(cargo), *selector, "install", "lazy_static"]
        try:
            run_command(argv, env=self.command_env())
        except (CommandError, OSError) as error:
            _log.debug("ignoring registry update failure: %s", error)


@dataclass
class WorkspaceBuilder:
    """Settings for creating a workspace."""

    path: Path
    user_agent: str
    sandbox_image: str | None = None
    command_timeout: timedelta | None = DEFAULT_COMMAND_TIMEOUT
    command_no_output_timeout: timedelta | None = DEFAULT_COMMAND_NO_OUTPUT_TIMEOUT
    fetch_registry_index_during_builds: bool = True
    fast_init: bool = False
    rustup_profile: str = DEFAULT_RUSTUP_PROFILE
    _unused: None = field(default=None, repr=False, compare=False)

    def init(self) -> Workspace:
        """Create the workspace directory and install the tools it needs."""
        path = Path(self.path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise RuntimeError(f"failed to create workspace directory: {path}") from error

        with file_lock(path / "lock", "initialize the workspace"):
            workspace = Workspace(
                path=path,
                user_agent=self.user_agent,
                sandbox_image=self.sandbox_image or DEFAULT_SANDBOX_IMAGE,
                command_timeout=self.command_timeout,
                command_no_output_timeout=self.command_no_output_timeout,
                fetch_registry_index_during_builds=self.fetch_registry_index_during_builds,
                rustup_profile=self.rustup_profile,
            )
            workspace._init(self.fast_init)
            return workspace