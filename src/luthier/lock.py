"""
Single-instance lock per game.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional

from luthier.host import HostEnvironment
from luthier.paths import compact_key, sanitize_key

logger = logging.getLogger(__name__)


class LockError(Exception):
    """Error acquiring the instance lock."""
    pass


def pid_is_running(pid: int) -> bool:
    return Path("/proc", str(pid)).exists()


def read_lock_pid(path: Path) -> Optional[int]:
    try:
        raw = path.read_text()
    except OSError as e:
        raise LockError(f"failed to read lock file {path}: {e}") from e
    for line in raw.splitlines():
        if line.startswith("pid="):
            try:
                return int(line[4:].strip())
            except ValueError:
                continue
    return None


class InstanceLock:
    """
    Exclusive lock file for one game, released on exit.

    Usage:
        with InstanceLock.for_game(host, config.exe_hash) as lock:
            ...
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.held = False

    @classmethod
    def for_game(cls, host: HostEnvironment, exe_hash: str) -> InstanceLock:
        return cls(host.luthier_data_dir() / "locks" / f"{sanitize_key(compact_key(exe_hash))}.lock")

    def _create(self) -> None:
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "w") as f:
            f.write(f"pid={os.getpid()}\n")
            f.write(f"created_at={int(time.time())}\n")

    def _reclaim_stale(self) -> bool:
        pid = read_lock_pid(self.path)
        if pid is None:
            # The holder may still be writing it.
            raise LockError(
                f"lock file {self.path} records no pid; remove it if no other instance is running"
            )
        if pid_is_running(pid):
            return False
        logger.info("removing stale lock %s (pid %d is gone)", self.path, pid)
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LockError(f"failed to remove stale lock {self.path}: {e}") from e
        return True

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LockError(f"failed to create lock directory {self.path.parent}: {e}") from e

        try:
            self._create()
        except FileExistsError:
            if not self._reclaim_stale():
                raise LockError(f"another instance for this game is already running (lock={self.path})")
            try:
                self._create()
            except OSError as e:
                raise LockError(f"failed to create lock file after stale cleanup {self.path}: {e}") from e
        except OSError as e:
            raise LockError(f"failed to create lock file {self.path}: {e}") from e

        self.held = True
        logger.info("acquired instance lock %s", self.path)

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("failed to remove lock %s: %s", self.path, e)

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
