# cratewide

A library for running Rust builds from a managed workspace. It installs rustup
and toolchains into a private directory, prepares crate sources for a build,
and captures the log output of everything that happens along the way.

## Installation

```
pip install cratewide
```

## Workspaces

A `Workspace` (in `cratewide.workspace`) is a directory holding its own cargo
and rustup homes, a cache directory and a builds directory. Create one with
`WorkspaceBuilder`. `init()` creates the directory, takes an exclusive lock on
`<path>/lock` while it works, and installs or updates the tools the workspace
needs: `rustup`, `rustup-toolchain-install-master` and `git-credential-null`.

```python
from pathlib import Path
from cratewide.workspace import WorkspaceBuilder

workspace = WorkspaceBuilder(Path(".workspaces/main"), "my-builder").init()
print(workspace.cargo_home(), workspace.rustup_home())

for toolchain in workspace.installed_toolchains():
    print(toolchain)

workspace.purge_all_build_dirs()
workspace.purge_all_caches()
```

Builder options are plain fields: `sandbox_image`, `command_timeout`,
`command_no_output_timeout`, `fetch_registry_index_during_builds`, `fast_init`
(installs tools with `--debug`) and `rustup_profile` (default `minimal`). When
`fetch_registry_index_during_builds` is off, `init()` also refreshes the
crates.io registry once.

`Workspace.managed_binary(name)` gives the path of a binary in the workspace's
cargo home, `command_env()` the `CARGO_HOME`/`RUSTUP_HOME` variables for running
it, and `download(url, dest)` fetches a file with the workspace's user agent.

## Toolchains

```python
from cratewide.toolchain import Toolchain

nightly = Toolchain.dist("nightly")
nightly.install(workspace)
nightly.add_target(workspace, "wasm32-unknown-unknown")
print(nightly.installed_targets(workspace))

Toolchain.dist("stable-x86_64-unknown-linux-gnu").is_needed_by_rustwide()  # True
Toolchain.from_dict({"type": "dist", "name": "stable"}) == Toolchain.dist("stable")  # True
Toolchain.ci("0000000", alt=True).rustup_name()  # "0000000-alt"
```

CI toolchains are installed with `rustup-toolchain-install-master`; removing
components or targets from them is not supported. `installed_targets` raises
`NotInstalledError` when the toolchain is missing and
`UnsupportedOperationError` for CI toolchains. `list_installed_toolchains(path)`
reads the toolchains present in a rustup home.

## Preparing crates

`cratewide.prepare.TomlTweaker` rewrites a parsed `Cargo.toml` so that it builds
on its own: examples and tests whose files are missing are dropped, the
`package.workspace` key is removed, the `publish-lockfile` and `default-run`
cargo features are disabled, and `[patch.crates-io]` entries are added for any
`GitPatch` or `PathPatch` given.

```python
from cratewide.prepare import TomlTweaker, PathPatch

tweaker = TomlTweaker.from_file("my-crate", "crate/Cargo.toml", [PathPatch("dep", "./dep")])
tweaker.tweak()
tweaker.save("crate/Cargo.toml")
```

`Prepare(workspace, toolchain, krate, source_dir, patches).prepare()` runs the
whole sequence: copying the source, validating the manifest with
`cargo metadata`, removing `.cargo/config`, `.cargo/config.toml`,
`rust-toolchain` and `rust-toolchain.toml`, tweaking the manifest, generating a
lockfile if there is none, and fetching dependencies with `fetch_deps`. Failures
raise a `PrepareError` subclass such as `MissingCargoTomlError`,
`InvalidCargoTomlSyntaxError`, `YankedDependenciesError` or
`MissingDependenciesError`.

## Capturing logs

```python
import logging
from cratewide import logging as cw_logging

cw_logging.init()
storage = cw_logging.LogStorage(logging.INFO)
with cw_logging.capture(storage):
    logging.getLogger("example").info("foo")
    logging.getLogger("example").debug("bar")

assert str(storage) == "[INFO] foo\n"
```

Capture is per thread. `init_with(handler)` also forwards every record to a
handler of your own. `LogStorage` accepts `max_size` and `max_lines` limits;
once one is hit a single warning is stored and further records are dropped.
Entering `capture` before `init` or `init_with` raises `NotInitializedError`.

## Utilities

`cratewide.utils` provides `run_command` (runs a program, passes each output
line to a callback, logs or captures output and raises `CommandError` on a
failing exit status), `file_lock`, `escape_path`, `normalize_path`, and
`remove_file`/`remove_dir_all`, which raise `RemoveError` naming the path.
`cratewide.native` provides `kill_process`, `current_user`, `is_executable` and
`make_executable`.

## What this package does not do

- It has no build directories or sandbox: there is no way to run a build inside
  a container. `sandbox_image` is stored on the workspace but not used.
- It does not fetch crates. `Prepare` expects a crate object of your own with a
  `copy_source_to(workspace, source_dir)` method.
- `command_timeout` and `command_no_output_timeout` are stored but not applied;
  commands run until they exit.
- There is no command-line interface; it is used as a library.