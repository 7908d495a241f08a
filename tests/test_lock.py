"""Tests for the host-wide pass lock."""

import os

import pytest

from hostpanel.errors import InfrastructureError, LockHeld
from hostpanel.lock import HostLock, lock_is_held


def test_acquire_writes_pid_and_release_is_idempotent(tmp_path):
    path = tmp_path / "run" / "hostpanel.lock"
    lock = HostLock(path)

    lock.acquire()
    assert lock.held
    assert path.read_text() == f"{os.getpid()}\n"

    lock.release()
    lock.release()
    assert not lock.held


def test_second_holder_is_refused(tmp_path):
    path = tmp_path / "hostpanel.lock"

    with HostLock(path):
        with pytest.raises(LockHeld, match="Another pass holds"):
            HostLock(path).acquire()
        assert lock_is_held(path)

    assert not lock_is_held(path)


def test_lock_can_be_taken_again_after_release(tmp_path):
    path = tmp_path / "hostpanel.lock"
    with HostLock(path):
        pass
    with HostLock(path) as lock:
        assert lock.held


def test_unusable_lock_path(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    with pytest.raises(InfrastructureError, match="Cannot open lock file"):
        HostLock(blocker / "hostpanel.lock").acquire()
