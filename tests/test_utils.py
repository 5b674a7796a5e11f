import errno
import sys
from pathlib import Path

import pytest

from cratewide.utils import (
    CommandError,
    RemoveError,
    _strip_verbatim,
    escape_path,
    file_lock,
    normalize_path,
    remove_dir_all,
    remove_file,
    run_command,
)


def test_custom_remove_error():
    error = RemoveError(PermissionError(errno.EACCES, "Permission denied"), "test/path")
    assert str(error) == "failed to remove 'test/path' : PermissionError(13, 'Permission denied')"
    assert error.errno == errno.EACCES


def test_remove_file_missing_raises(tmp_path):
    missing = tmp_path / "missing"
    with pytest.raises(RemoveError) as info:
        remove_file(missing)
    assert info.value.errno == errno.ENOENT
    assert info.value.path == missing


def test_remove_file_and_dir(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x")
    remove_file(target)
    assert not target.exists()

    tree = tmp_path / "tree" / "nested"
    tree.mkdir(parents=True)
    (tree / "a").write_text("a")
    remove_dir_all(tmp_path / "tree")
    assert not (tmp_path / "tree").exists()


def test_remove_dir_all_missing_raises(tmp_path):
    with pytest.raises(RemoveError) as info:
        remove_dir_all(tmp_path / "nope")
    assert "failed to remove" in str(info.value)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (b"foo/bar baz", "foo%2Fbar%20baz"),
        (b"a:b*c?", "a%3Ab%2Ac%3F"),
        (b'<x>|"y"\\', "%3Cx%3E%7C%22y%22%5C"),
        (b"\x00\x1f\x7f", "%00%1F%7F"),
        ("é".encode(), "%C3%A9"),
        (b"plain-name_1.0~", "plain-name_1.0~"),
    ],
)
def test_escape_path(raw, expected):
    assert escape_path(raw) == expected


def test_file_lock_runs_body(tmp_path):
    lock_path = tmp_path / "lock"
    seen = []
    with file_lock(lock_path, "test"):
        seen.append(lock_path.exists())
    assert seen == [True]


def test_normalize_existing_path(tmp_path, monkeypatch):
    (tmp_path / "dir").mkdir()
    monkeypatch.chdir(tmp_path)
    assert normalize_path("dir") == (tmp_path / "dir").resolve()


def test_normalize_missing_path_is_unchanged():
    assert normalize_path(Path("does/not/exist")) == Path("does/not/exist")


@pytest.mark.parametrize(
    "raw, expected",
    [
        (r"C:\Users\carl", None),
        (r"\Users\carl", None),
        (r"\\?\C:\Users\carl", r"C:\Users\carl"),
        (r"\\?\Users\carl", r"Users\carl"),
        (r"\\?\UNC\server\share\dir", r"\\server\share\dir"),
    ],
)
def test_strip_verbatim(raw, expected):
    assert _strip_verbatim(raw) == expected


def test_run_command_captures_stdout():
    lines = run_command([sys.executable, "-c", "print('a'); print('b')"], capture=True)
    assert lines == ["a", "b"]


def test_run_command_on_line_sees_stderr():
    seen = []
    run_command(
        [sys.executable, "-c", "import sys; sys.stderr.write('oops\\n')"],
        on_line=seen.append,
    )
    assert seen == ["oops"]


def test_run_command_env_and_cwd(tmp_path):
    lines = run_command(
        [sys.executable, "-c", "import os; print(os.environ['CW_VALUE']); print(os.getcwd())"],
        cwd=tmp_path,
        env={"CW_VALUE": "hello"},
        capture=True,
    )
    assert lines[0] == "hello"
    assert Path(lines[1]).resolve() == tmp_path.resolve()


def test_run_command_failure():
    with pytest.raises(CommandError) as info:
        run_command([sys.executable, "-c", "raise SystemExit(3)"])
    assert info.value.returncode == 3