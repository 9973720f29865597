from __future__ import annotations

import os
import threading
import time

import pytest

from modhost.core.errors import LockTimeoutError
from modhost.core.modules.locking import PublishLock
from tests.helpers.modules import DummyLogger


def _lock(tmp_path, **kw) -> PublishLock:
    return PublishLock(lock_path=str(tmp_path / "registry.lock"), logger=DummyLogger(), **kw)


def test_acquire_release_removes_file(tmp_path):
    lock = _lock(tmp_path)
    with lock:
        assert lock.held
        assert os.path.exists(lock.lock_path)
    assert not lock.held
    assert not os.path.exists(lock.lock_path)


def test_second_writer_times_out(tmp_path):
    holder = _lock(tmp_path)
    other = _lock(tmp_path, timeout_seconds=0.2, poll_interval_seconds=0.02)
    with holder:
        t0 = time.monotonic()
        with pytest.raises(LockTimeoutError) as ei:
            with other.hold(modules=["users"]):
                pass
        assert time.monotonic() - t0 < 2.0
    assert ei.value.code == "lock_timeout"
    assert ei.value.modules == ["users"]
    # holder released normally; the failed writer left nothing behind
    assert not os.path.exists(holder.lock_path)


def test_stale_lock_is_broken(tmp_path):
    path = tmp_path / "registry.lock"
    path.write_text("{}", encoding="utf-8")
    old = time.time() - 3600
    os.utime(path, (old, old))
    lock = _lock(tmp_path, timeout_seconds=1.0, stale_seconds=60.0)
    with lock:
        assert lock.held


def test_threads_serialize(tmp_path):
    lock = _lock(tmp_path, timeout_seconds=5.0, poll_interval_seconds=0.01)
    inside = []
    overlaps = []

    def worker(i: int) -> None:
        with lock.hold():
            if inside:
                overlaps.append(i)
            inside.append(i)
            time.sleep(0.02)
            inside.remove(i)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlaps == []


class _SlowBreaker(PublishLock):
    """Sees the stale lock, then lets `rival` break and re-take it before acting."""

    def __init__(self, *, rival: PublishLock, **kw):
        super().__init__(**kw)
        self.rival = rival
        self._interleaved = False

    def _age(self, path):  # noqa: ANN001
        age = PublishLock._age(path)
        if path == self.lock_path and not self._interleaved:
            self._interleaved = True
            self.rival.acquire()
        return age


def test_concurrent_breakers_never_remove_a_live_lock(tmp_path):
    path = tmp_path / "registry.lock"
    path.write_text("{}", encoding="utf-8")
    old = time.time() - 3600
    os.utime(path, (old, old))

    rival = _lock(tmp_path, timeout_seconds=1.0, poll_interval_seconds=0.01, stale_seconds=60.0)
    slow = _SlowBreaker(rival=rival, lock_path=str(path), logger=DummyLogger(), stale_seconds=60.0)

    assert slow._break_if_stale() is False
    assert rival.held
    assert os.path.exists(rival.lock_path)
    assert slow._try_create() is False
    assert not os.path.exists(rival.lock_path + ".break")
    rival.release()
    assert not os.path.exists(rival.lock_path)


def test_leftover_break_marker_is_cleared(tmp_path):
    path = tmp_path / "registry.lock"
    marker = tmp_path / "registry.lock.break"
    for p in (path, marker):
        p.write_text("{}", encoding="utf-8")
        old = time.time() - 3600
        os.utime(p, (old, old))
    lock = _lock(tmp_path, timeout_seconds=1.0, stale_seconds=60.0)
    with lock:
        assert lock.held
    assert not marker.exists()
