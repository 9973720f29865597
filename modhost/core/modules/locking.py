from __future__ import annotations

"""
Exclusive writer lock for registry publication.

WHY THIS FILE EXISTS:
The compiled registry artifact and state store are shared by every process
rooted at the same storage directory. Readers never lock. Writers hold this
lock around reload-state + compute-snapshot + publish so two writers cannot
interleave. Acquisition is bounded: after `timeout_seconds` it fails with
LockTimeoutError instead of blocking forever.

The lock is a file created with O_CREAT|O_EXCL holding the owner pid and
acquisition time. A lock file older than `stale_seconds` is treated as left
behind by a crashed writer and broken.
"""

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from modhost.core.errors import LockTimeoutError


class PublishLock:
    def __init__(
        self,
        *,
        lock_path: str,
        timeout_seconds: float = 10.0,
        poll_interval_seconds: float = 0.05,
        stale_seconds: float = 300.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.lock_path = str(lock_path)
        self.timeout_seconds = float(timeout_seconds)
        self.poll_interval_seconds = float(poll_interval_seconds)
        self.stale_seconds = float(stale_seconds)
        self.logger = logger or logging.getLogger("modhost.modules.lock")
        # serializes threads of this process before they race on the file
        self._thread_lock = threading.Lock()
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({"pid": os.getpid(), "acquired_at": time.time()}, f)
        return True

    @staticmethod
    def _age(path: str) -> Optional[float]:
        try:
            return time.time() - os.path.getmtime(path)
        except OSError:
            return None

    @property
    def _break_path(self) -> str:
        return self.lock_path + ".break"

    def _break_if_stale(self) -> bool:
        """
        Remove a lock file left by a crashed writer.

        Breakers serialize on a second O_EXCL file and re-check the age while
        holding it, so a lock another breaker has already replaced with a live
        one is never removed.
        """
        age = self._age(self.lock_path)
        if age is None or age < self.stale_seconds:
            return False
        guard_age = self._age(self._break_path)
        if guard_age is not None and guard_age >= self.stale_seconds:
            # a breaker died between creating and removing its marker
            try:
                os.remove(self._break_path)
            except FileNotFoundError:
                pass
        try:
            fd = os.open(self._break_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        os.close(fd)
        try:
            age = self._age(self.lock_path)
            if age is None or age < self.stale_seconds:
                return False
            try:
                os.remove(self.lock_path)
            except FileNotFoundError:
                return False
            self.logger.warning("broke stale publish lock %s (age %.1fs)", self.lock_path, age)
            return True
        finally:
            try:
                os.remove(self._break_path)
            except FileNotFoundError:
                pass

    def acquire(self, *, modules: Iterable[str] = ()) -> None:
        start = time.monotonic()
        deadline = start + self.timeout_seconds
        if not self._thread_lock.acquire(timeout=self.timeout_seconds):
            raise LockTimeoutError(self.lock_path, time.monotonic() - start, modules)
        try:
            os.makedirs(os.path.dirname(self.lock_path) or ".", exist_ok=True)
            while True:
                if self._try_create():
                    self._held = True
                    return
                self._break_if_stale()
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(self.lock_path, time.monotonic() - start, modules)
                time.sleep(self.poll_interval_seconds)
        except BaseException:
            self._thread_lock.release()
            raise

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            self.logger.warning("publish lock %s vanished before release", self.lock_path)
        finally:
            self._thread_lock.release()

    @contextmanager
    def hold(self, *, modules: Iterable[str] = ()) -> Iterator["PublishLock"]:
        self.acquire(modules=modules)
        try:
            yield self
        finally:
            self.release()

    def __enter__(self) -> "PublishLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.release()
        return None
