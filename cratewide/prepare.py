"""Preparation of a crate's source directory before it is built."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomli_w

from .utils import CommandError, remove_file, run_command

_log = logging.getLogger(__name__)

_OVERRIDE_FILES = (
    Path(".cargo") / "config",
    Path(".cargo") / "config.toml",
    Path("rust-toolchain"),
    Path("rust-toolchain.toml"),
)


class PrepareError(Exception):
    """Failure while preparing a crate for a build."""

    default_message = "failed to prepare the crate"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class PrivateGitRepositoryError(PrepareError):
    """The git repository is not publicly available."""

    default_message = "can't fetch private git repositories"


class MissingCargoTomlError(PrepareError):
    """The crate has no Cargo.toml in its source."""

    default_message = "missing Cargo.toml"


class InvalidCargoTomlSyntaxError(PrepareError):
    """The crate's Cargo.toml is malformed or rejected by cargo."""

    default_message = "invalid Cargo.toml syntax"


class YankedDependenciesError(PrepareError):
    """Some dependencies of the crate were yanked."""

    default_message = "the crate depends on yanked dependencies"


class MissingDependenciesError(PrepareError):
    """Some dependencies of the crate do not exist anymore."""

    default_message = "the crate depends on missing dependencies"


@dataclass(frozen=True)
class GitPatch:
    """Replace a crates.io dependency with a branch of a git repository."""

    name: str
    uri: str
    branch: str


@dataclass(frozen=True)
class PathPatch:
    """Replace a crates.io dependency with a local path."""

    name: str
    path: str


def _cargo_argv(workspace: Any, toolchain: Any, *args: str) -> list:
    binary, *selector = toolchain.binary_args("cargo")
    return [workspace.managed_binary(binary), *selector, *args]


def _env(workspace: Any, **extra: str) -> dict:
    return {**workspace.command_env(), **extra}


class TomlTweaker:
    """Rewrites a parsed Cargo.toml so the crate builds in isolation."""

    def __init__(
        self,
        krate: Any,
        table: dict,
        directory: str | os.PathLike | None = None,
        patches: Iterable[GitPatch | PathPatch] = (),
    ) -> None:
        self.krate = krate
        self.table = table
        self.directory = Path(directory) if directory is not None else None
        self.patches = list(patches)

    @classmethod
    def from_file(
        cls,
        krate: Any,
        cargo_toml: str | os.PathLike,
        patches: Iterable[GitPatch | PathPatch] = (),
    ) -> TomlTweaker:
        """Load and parse the manifest at ``cargo_toml``."""
        path = Path(cargo_toml)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            raise MissingCargoTomlError() from error
        try:
            table = tomllib.loads(content)
        except tomllib.TOMLDecodeError as error:
            raise InvalidCargoTomlSyntaxError() from error
        return cls(krate, table, path.parent, patches)

    def tweak(self) -> None:
        """Apply every adjustment to the manifest table."""
        _log.info("started tweaking %s", self.krate)
        self._remove_missing_items("example")
        self._remove_missing_items("test")
        self._remove_parent_workspaces()
        self._remove_unwanted_cargo_features()
        self._apply_patches()
        _log.info("finished tweaking %s", self.krate)

    def _existing_items(self, items: list, folder: str) -> list:
        kept = []
        for item in items:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if not isinstance(name, str):
                continue
            if "path" in item:
                if not isinstance(item["path"], str):
                    continue
                path = self.directory / item["path"]
            else:
                path = self.directory / folder / f"{name}.rs"
            if path.exists():
                kept.append(item)
        return kept

    def _remove_missing_items(self, category: str) -> None:
        folder = f"{category}s"
        if self.directory is None:
            return
        items = self.table.get(category)
        if isinstance(items, list):
            kept = self._existing_items(items, folder)
            self.table[category] = kept
            _log.info("removed %d missing %s", len(items) - len(kept), folder)

    def _remove_parent_workspaces(self) -> None:
        package = self.table.get("package")
        if isinstance(package, dict) and package.pop("workspace", None) is not None:
            _log.info("removed parent workspace from %s", self.krate)

    def _remove_unwanted_cargo_features(self) -> None:
        found: set[str] = set()
        features = self.table.get("cargo-features")
        if isinstance(features, list):
            kept = []
            for feature in features:
                if not isinstance(feature, str):
                    continue
                if feature in ("publish-lockfile", "default-run"):
                    found.add(feature)
                else:
                    kept.append(feature)
            features[:] = kept

        for feature in ("publish-lockfile", "default-run"):
            if feature in found:
                _log.info("disabled cargo feature '%s' from %s", feature, self.krate)
                package = self.table.get("package")
                if isinstance(package, dict):
                    package.pop(feature, None)

    def _apply_patches(self) -> None:
        if not self.patches:
            return
        crates_io = self.table.setdefault("patch", {}).setdefault("crates-io", {})
        for patch in self.patches:
            if isinstance(patch, GitPatch):
                crates_io[patch.name] = {"git": patch.uri, "branch": patch.branch}
            else:
                crates_io[patch.name] = {"path": patch.path}

    def save(self, output_file: str | os.PathLike) -> None:
        """Write the manifest table to ``output_file``."""
        Path(output_file).write_text(tomli_w.dumps(self.table), encoding="utf-8")
        _log.info("tweaked toml for %s written to %s", self.krate, output_file)


class Prepare:
    """Copies a crate's source and makes it ready to be built offline."""

    def __init__(
        self,
        workspace: Any,
        toolchain: Any,
        krate: Any,
        source_dir: str | os.PathLike,
        patches: Iterable[GitPatch | PathPatch] = (),
    ) -> None:
        self.workspace = workspace
        self.toolchain = toolchain
        self.krate = krate
        self.source_dir = Path(source_dir)
        self.patches = list(patches)

    def prepare(self) -> None:
        """Run every preparation step in order."""
        self.krate.copy_source_to(self.workspace, self.source_dir)
        self._validate_manifest()
        self._remove_override_files()
        self._tweak_toml()
        self._capture_lockfile()
        fetch_deps(self.workspace, self.toolchain, self.source_dir, ())

    def _validate_manifest(self) -> None:
        _log.info(
            "validating manifest of %s on toolchain %s", self.krate, self.toolchain
        )
        if not (self.source_dir / "Cargo.toml").is_file():
            raise MissingCargoTomlError()
        argv = _cargo_argv(
            self.workspace,
            self.toolchain,
            "metadata",
            "--manifest-path",
            "Cargo.toml",
            "--no-deps",
        )
        try:
            run_command(
                argv, cwd=self.source_dir, env=_env(self.workspace), capture=True
            )
        except (CommandError, OSError) as error:
            raise InvalidCargoTomlSyntaxError() from error

    def _remove_override_files(self) -> None:
        for relative in _OVERRIDE_FILES:
            path = self.source_dir / relative
            if path.exists():
                remove_file(path)
                _log.info("removed %s", path)

    def _tweak_toml(self) -> None:
        path = self.source_dir / "Cargo.toml"
        tweaker = TomlTweaker.from_file(self.krate, path, self.patches)
        tweaker.tweak()
        tweaker.save(path)

    def _capture_lockfile(self) -> None:
        if (self.source_dir / "Cargo.lock").exists():
            _log.info(
                "crate %s already has a lockfile, it will not be regenerated",
                self.krate,
            )
            return

        yanked_deps = False
        missing_deps = False

        def watch(line: str) -> None:
            nonlocal yanked_deps, missing_deps
            if "failed to select a version for the requirement" in line:
                yanked_deps = True
            elif (
                "failed to load source for dependency" in line
                or "no matching package named" in line
            ):
                missing_deps = True

        args = ["generate-lockfile", "--manifest-path", "Cargo.toml"]
        extra_env: dict[str, str] = {}
        if not self.workspace.fetch_registry_index_during_builds:
            args.append("-Zno-index-update")
            extra_env["__CARGO_TEST_CHANNEL_OVERRIDE_DO_NOT_USE_THIS"] = "nightly"
        argv = _cargo_argv(self.workspace, self.toolchain, *args)
        try:
            run_command(
                argv,
                cwd=self.source_dir,
                env=_env(self.workspace, **extra_env),
                on_line=watch,
            )
        except CommandError as error:
            if yanked_deps:
                raise YankedDependenciesError() from error
            if missing_deps:
                raise MissingDependenciesError() from error
            raise


def fetch_deps(
    workspace: Any,
    toolchain: Any,
    source_dir: str | os.PathLike,
    fetch_build_std_targets: Sequence[str] = (),
) -> None:
    """Download every dependency of the crate in ``source_dir``."""
    args = ["fetch", "--manifest-path", "Cargo.toml"]
    extra_env: dict[str, str] = {}
    # build-std needs the sources of the standard library's dependencies too.
    if fetch_build_std_targets:
        toolchain.add_component(workspace, "rust-src")
        args.append("-Zbuild-std")
        extra_env["RUSTC_BOOTSTRAP"] = "1"
    for target in fetch_build_std_targets:
        args += ["--target", target]

    missing_deps = False

    def watch(line: str) -> None:
        nonlocal missing_deps
        if "failed to load source for dependency" in line:
            missing_deps = True

    argv = _cargo_argv(workspace, toolchain, *args)
    try:
        run_command(
            argv, cwd=source_dir, env=_env(workspace, **extra_env), on_line=watch
        )
    except CommandError as error:
        if missing_deps:
            raise MissingDependenciesError() from error
        raise