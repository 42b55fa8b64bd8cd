"""Durable key-value storage: one JSON document with advisory file locking."""
from __future__ import annotations

import copy
import fcntl
import json
import os
import threading
from pathlib import Path
from typing import IO, Any, Callable

from job_applier.errors import StateError
from job_applier.log import get_logger

log = get_logger(__name__)

JOBS_KEY = "job_queue"
STATE_KEY = "application_state"


def _lock(f, exclusive: bool = True) -> None:
    """Advisory file lock (Unix fcntl)."""
    try:
        op = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        fcntl.flock(f.fileno(), op)
    except (OSError, AttributeError):
        pass


def _unlock(f) -> None:
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (OSError, AttributeError):
        pass


class KeyValueStore:
    """JSON file shared by every context of one installation.

    Reads always go to disk so a freshly attached context sees what the
    previous one persisted. Writes are read-modify-write under an exclusive
    lock on a sidecar ``.lock`` file and land via atomic rename. A second
    sidecar, ``.lease``, marks which context currently drives the pipeline.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock_path = self.path.with_name(self.path.name + ".lock")
        self._lease_path = self.path.with_name(self.path.name + ".lease")
        self._mutex = threading.RLock()

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                _lock(f, exclusive=False)
                try:
                    raw = f.read()
                finally:
                    _unlock(f)
        except FileNotFoundError:
            return {}
        except OSError as exc:
            log.error("Could not read %s: %s", self.path, exc)
            return {}
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            log.error("Corrupt state file %s (%s), starting empty", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, key: str, change: Callable[[dict[str, Any]], Any]) -> Any:
        """Run ``change`` on the freshly loaded document and persist the result.

        Only I/O and serialisation problems become ``StateError``; anything
        ``change`` raises propagates untouched and nothing is written.
        """
        with self._mutex:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                lock_file = open(self._lock_path, "a", encoding="utf-8")
            except OSError as exc:
                raise StateError(key, exc) from exc
            with lock_file:
                _lock(lock_file)
                try:
                    data = self._load()
                    result = change(data)
                    try:
                        tmp = self.path.with_name(self.path.name + ".tmp")
                        with open(tmp, "w", encoding="utf-8") as f:
                            json.dump(data, f, indent=2)
                            f.flush()
                            os.fsync(f.fileno())
                        os.replace(tmp, self.path)
                    except (OSError, TypeError, ValueError) as exc:
                        raise StateError(key, exc) from exc
                finally:
                    _unlock(lock_file)
            return result

    def get(self, key: str, default: Any = None) -> Any:
        with self._mutex:
            value = self._load().get(key, default)
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        snapshot = copy.deepcopy(value)

        def change(data: dict[str, Any]) -> None:
            data[key] = snapshot

        self._write(key, change)

    def update(self, key: str, change: Callable[[Any], Any]) -> Any:
        """Replace ``key`` with ``change(current)`` under the write lock; returns the new value."""

        def apply(data: dict[str, Any]) -> Any:
            value = change(copy.deepcopy(data.get(key)))
            data[key] = value
            return copy.deepcopy(value)

        return self._write(key, apply)

    def clear(self) -> None:
        self._write("*", lambda data: data.clear())

    def try_lease(self) -> IO[str] | None:
        """Non-blocking exclusive lock on the ``.lease`` sidecar.

        Returns the open handle that holds the lock, or None while another
        handle (in this process or any other) holds it. The lock goes away
        with the handle, so a crashed holder never leaves it behind.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self._lease_path, "a", encoding="utf-8")
        except OSError as exc:
            raise StateError("lease", exc) from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            handle.close()
            return None
        return handle

    @staticmethod
    def release_lease(handle: IO[str]) -> None:
        _unlock(handle)
        handle.close()
