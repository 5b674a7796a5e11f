"""Filesystem, locking and process helpers."""

from __future__ import annotations

import logging
import os
import queue
import shutil
import subprocess
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

_log = logging.getLogger(__name__)

_ENCODE_SET = frozenset(b'/\\<>:"|?* ')

# Conservative Windows path limit, leaving room for files inside a directory.
_MAX_PATH_LEN = 260 - 12


def escape_path(unescaped: bytes | str) -> str:
    """Percent-encode the bytes that are unsafe in a file name."""
    if isinstance(unescaped, str):
        unescaped = unescaped.encode("utf-8")
    return "".join(
        f"%{b:02X}" if b < 0x20 or b >= 0x7F or b in _ENCODE_SET else chr(b)
        for b in unescaped
    )


@contextmanager
def file_lock(path: str | os.PathLike, msg: str) -> Iterator[None]:
    """Hold an exclusive lock on ``path`` while the block runs."""
    lock = FileLock(os.fspath(path))
    try:
        lock.acquire(timeout=0)
    except Timeout:
        _log.warning("blocking on other processes finishing to %s", msg)
        lock.acquire()
    try:
        yield
    finally:
        lock.release()


class RemoveError(OSError):
    """Failure to remove a path, carrying the path and the original error."""

    def __init__(self, underlying: OSError, path: str | os.PathLike) -> None:
        super().__init__(underlying.errno, underlying.strerror, os.fspath(path))
        self.underlying = underlying
        self.path = Path(path)

    def __str__(self) -> str:
        return f"failed to remove '{self.path}' : {self.underlying!r}"


def remove_file(path: str | os.PathLike) -> None:
    """Remove a file, raising RemoveError on failure."""
    try:
        os.remove(path)
    except OSError as error:
        raise RemoveError(error, path) from error


def remove_dir_all(path: str | os.PathLike) -> None:
    """Remove a directory tree, raising RemoveError on failure."""
    try:
        shutil.rmtree(path)
    except OSError as error:
        raise RemoveError(error, path) from error


def _strip_verbatim(path: str) -> str | None:
    """Drop an extended-length ``\\\\?\\`` prefix, or return None if there is none."""
    prefix = "\\\\?\\"
    if not path.startswith(prefix):
        return None
    rest = path[len(prefix):]
    if rest[:4].upper() == "UNC\\":
        return "\\\\" + rest[4:]
    return rest


def normalize_path(path: str | os.PathLike) -> Path:
    """Canonicalize a path if it exists, avoiding extended-length paths on Windows."""
    original = Path(path)
    try:
        resolved = original.resolve(strict=True)
    except (OSError, RuntimeError):
        resolved = original
    if os.name == "nt":
        stripped = _strip_verbatim(str(resolved))
        if stripped is not None:
            resolved = Path(stripped)
        if len(str(resolved)) >= _MAX_PATH_LEN:
            _log.warning("Canonicalized path is too long for Windows: %r", str(resolved))
    return resolved


class CommandError(Exception):
    """A command exited with a failure status."""

    def __init__(self, argv: Sequence[str], returncode: int) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        super().__init__(
            f"command `{' '.join(self.argv)}` failed with exit status {returncode}"
        )


def _pump(stream, kind: str, lines: queue.Queue) -> None:
    with stream:
        for raw in stream:
            lines.put((kind, raw.decode("utf-8", "replace").rstrip("\r\n")))
    lines.put((kind, None))


def run_command(
    argv: Sequence[str | os.PathLike],
    cwd: str | os.PathLike | None = None,
    env: Mapping[str, str | os.PathLike] | None = None,
    on_line: Callable[[str], None] | None = None,
    capture: bool = False,
) -> list[str]:
    """Run a command, feeding each output line to ``on_line``.

    Output is logged unless ``capture`` is set, in which case the stdout
    lines are returned. A failing exit status raises CommandError.
    """
    args = [os.fspath(a) for a in argv]
    full_env = None
    if env:
        full_env = {**os.environ, **{k: os.fspath(v) for k, v in env.items()}}
    proc = subprocess.Popen(
        args,
        cwd=cwd,
        env=full_env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    lines: queue.Queue = queue.Queue()
    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, "stdout", lines), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, "stderr", lines), daemon=True),
    ]
    for reader in readers:
        reader.start()

    captured: list[str] = []
    open_streams = len(readers)
    while open_streams:
        kind, line = lines.get()
        if line is None:
            open_streams -= 1
            continue
        if on_line is not None:
            on_line(line)
        if capture:
            if kind == "stdout":
                captured.append(line)
        else:
            _log.info("[%s] %s", kind, line)

    for reader in readers:
        reader.join()
    returncode = proc.wait()
    if returncode != 0:
        raise CommandError(args, returncode)
    return captured