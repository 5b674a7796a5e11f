"""Operating-system specific process and permission helpers."""

from __future__ import annotations

import os
import signal
import stat
from dataclasses import dataclass
from pathlib import Path

EXECUTABLE_BITS = 0o5

_WINDOWS = os.name == "nt"


@dataclass(frozen=True)
class CurrentUser:
    """Effective user and group of the running process."""

    user_id: int
    group_id: int


class KillFailedError(Exception):
    """A process could not be killed."""

    def __init__(self, pid: int, errno: int | None = None) -> None:
        self.pid = pid
        self.errno = errno
        detail = f" (errno {errno})" if errno is not None else ""
        super().__init__(f"failed to kill the process with PID {pid}{detail}")


def kill_process(pid: int) -> None:
    """Forcefully terminate the process with the given id."""
    # On Windows os.kill uses TerminateProcess with the signal as exit code.
    sig = 101 if _WINDOWS else signal.SIGKILL
    try:
        os.kill(pid, sig)
    except OSError as error:
        raise KillFailedError(pid, error.errno) from error


def current_user() -> CurrentUser | None:
    """Return the effective user, or None where the concept does not apply."""
    if _WINDOWS:
        return None
    return CurrentUser(os.geteuid(), os.getegid())


def _executable_mode_for(path: Path) -> int:
    info = path.stat()
    user = current_user()
    if info.st_uid == user.user_id:
        return EXECUTABLE_BITS << 6
    if info.st_gid == user.group_id:
        return EXECUTABLE_BITS << 3
    return EXECUTABLE_BITS


def is_executable(path: str | os.PathLike) -> bool:
    """Whether the current user can execute ``path``."""
    path = Path(path)
    if _WINDOWS:
        with open(path, "rb"):
            pass
        if not path.suffix:
            raise ValueError("Unable to get `Path` extension")
        return path.suffix == ".exe"
    expected = _executable_mode_for(path)
    return path.stat().st_mode & expected == expected


def make_executable(path: str | os.PathLike) -> None:
    """Set the read and execute bits for the current user on ``path``."""
    path = Path(path)
    if _WINDOWS:
        if not is_executable(path):
            raise PermissionError("Downloaded binaries should be executable by default")
        return
    mode = stat.S_IMODE(path.stat().st_mode) | _executable_mode_for(path)
    os.chmod(path, mode)