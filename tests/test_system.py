"""Tests for filesystem and process helpers."""

import subprocess
import sys
from unittest.mock import patch

import pytest

from hostpanel.errors import CommandError
from hostpanel.system import (
    ensure_dir,
    read_map,
    remove_path,
    run_command,
    write_file_atomic,
    write_map,
)


def test_run_command_returns_stdout():
    assert run_command([sys.executable, "-c", "print('hi')"], timeout=30) == "hi\n"


def test_run_command_passes_stdin():
    out = run_command(
        [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
        timeout=30,
        input_text="abc",
    )
    assert out.strip() == "ABC"


def test_run_command_nonzero_exit():
    with pytest.raises(CommandError, match="bad things"):
        run_command(
            [sys.executable, "-c", "import sys; sys.stderr.write('bad things'); sys.exit(3)"],
            timeout=30,
        )


def test_run_command_timeout():
    with (
        patch(
            "hostpanel.system.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["sleep"], 2),
        ),
        pytest.raises(CommandError, match="timed out after 2s"),
    ):
        run_command(["sleep", "10"], timeout=2)


def test_run_command_missing_binary():
    with pytest.raises(CommandError):
        run_command(["/nonexistent/hostpanel-binary"], timeout=5)


def test_write_file_atomic_reports_changes(tmp_path):
    target = tmp_path / "sub" / "file.conf"

    assert write_file_atomic(target, "one\n", mode=0o640) is True
    assert target.read_text() == "one\n"
    assert (target.stat().st_mode & 0o777) == 0o640

    assert write_file_atomic(target, "one\n", mode=0o640) is False
    assert write_file_atomic(target, "two\n", mode=0o640) is True
    assert target.read_text() == "two\n"
    assert [p.name for p in target.parent.iterdir()] == ["file.conf"]


def test_ensure_dir_sets_mode(tmp_path):
    path = tmp_path / "a" / "b"
    ensure_dir(path, mode=0o750)
    assert path.is_dir()
    assert (path.stat().st_mode & 0o777) == 0o750


def test_remove_path(tmp_path):
    tree = tmp_path / "tree"
    (tree / "x").mkdir(parents=True)
    (tree / "x" / "f").write_text("data")
    single = tmp_path / "single"
    single.write_text("data")

    assert remove_path(tree) is True
    assert remove_path(single) is True
    assert remove_path(tree) is False
    assert not tree.exists()
    assert not single.exists()


def test_map_round_trip_is_sorted(tmp_path):
    path = tmp_path / "aliases"
    write_map(path, {"b@example.test": "x@example.test", "a@example.test": "y@example.test"})

    assert path.read_text().splitlines()[0].startswith("a@example.test")
    assert read_map(path) == {
        "a@example.test": "y@example.test",
        "b@example.test": "x@example.test",
    }
    assert read_map(tmp_path / "missing") == {}
