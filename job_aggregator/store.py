"""Persistent store contract behind SearchCache, with two backends.

Entries are plain JSON-compatible dicts. Interaction marks are kept beside
the entry as ``{job_id: {kind: set(user_ids)}}`` and are only ever changed
through the atomic ``add_mark`` / ``remove_mark`` operations.
"""
from __future__ import annotations

import copy
import fcntl
import hashlib
import json
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from job_aggregator.errors import CacheUnavailable
from job_aggregator.log import get_logger

log = get_logger(__name__)

MARK_KINDS: tuple[str, ...] = ("viewed", "applied", "saved")

Marks = dict[str, dict[str, set[str]]]


class CacheStore(ABC):
    @abstractmethod
    def get(self, key: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    def put(self, key: str, entry: dict[str, Any], ttl: float) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass

    @abstractmethod
    def add_mark(self, key: str, job_id: str, kind: str, user_id: str) -> None:
        pass

    @abstractmethod
    def remove_mark(self, key: str, job_id: str, kind: str, user_id: str) -> None:
        pass

    @abstractmethod
    def get_marks(self, key: str) -> Marks:
        pass


def _check_kind(kind: str) -> None:
    if kind not in MARK_KINDS:
        raise ValueError(f"unknown mark kind {kind!r}")


class InMemoryStore(CacheStore):
    """Process-local store; the default for tests and single-process use."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[dict[str, Any], float]] = {}
        self._marks: dict[str, Marks] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            entry, expires = item
            if time.time() >= expires:
                self._drop(key)
                return None
            return copy.deepcopy(entry)

    def put(self, key: str, entry: dict[str, Any], ttl: float) -> None:
        with self._lock:
            self._entries[key] = (copy.deepcopy(entry), time.time() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def add_mark(self, key: str, job_id: str, kind: str, user_id: str) -> None:
        _check_kind(kind)
        with self._lock:
            job = self._marks.setdefault(key, {}).setdefault(job_id, {})
            job.setdefault(kind, set()).add(user_id)

    def remove_mark(self, key: str, job_id: str, kind: str, user_id: str) -> None:
        _check_kind(kind)
        with self._lock:
            self._marks.get(key, {}).get(job_id, {}).get(kind, set()).discard(user_id)

    def get_marks(self, key: str) -> Marks:
        with self._lock:
            return copy.deepcopy(self._marks.get(key, {}))

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        self._marks.pop(key, None)


def _lock(f, exclusive: bool = True) -> None:
    """Advisory file lock (Unix fcntl)."""
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    except (OSError, AttributeError):
        pass


def _unlock(f) -> None:
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (OSError, AttributeError):
        pass


class FileStore(CacheStore):
    """One JSON document per signature under *root*.

    Each document holds ``{"key", "expires", "entry", "marks"}``. A sibling
    ``.lock`` file serializes read-modify-write cycles across processes;
    documents are replaced atomically.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheUnavailable(f"cannot create cache dir {self.root}: {exc}") from exc
        log.info("File cache store at %s", self.root)

    def get(self, key: str) -> dict[str, Any] | None:
        with self._locked(key, exclusive=False):
            doc = self._read(key)
        if doc is None or doc.get("entry") is None:
            return None
        if time.time() >= doc.get("expires", 0):
            self.delete(key)
            return None
        return doc["entry"]

    def put(self, key: str, entry: dict[str, Any], ttl: float) -> None:
        with self._locked(key):
            doc = self._read(key) or {"key": key, "marks": {}}
            doc["entry"] = entry
            doc["expires"] = time.time() + ttl
            self._write(key, doc)

    def delete(self, key: str) -> None:
        with self._locked(key):
            try:
                self._path(key).unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise CacheUnavailable(f"cannot delete {key}: {exc}") from exc

    def keys(self) -> list[str]:
        out: list[str] = []
        try:
            paths = sorted(self.root.glob("*.json"))
        except OSError as exc:
            raise CacheUnavailable(f"cannot list {self.root}: {exc}") from exc
        for path in paths:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    out.append(json.load(f)["key"])
            except (OSError, ValueError, KeyError) as exc:
                log.warning("Skipping unreadable cache file %s: %s", path.name, exc)
        return out

    def add_mark(self, key: str, job_id: str, kind: str, user_id: str) -> None:
        _check_kind(kind)
        with self._locked(key):
            doc = self._read(key) or {"key": key, "entry": None, "expires": 0}
            users = doc.setdefault("marks", {}).setdefault(job_id, {}).setdefault(kind, [])
            if user_id not in users:
                users.append(user_id)
                self._write(key, doc)

    def remove_mark(self, key: str, job_id: str, kind: str, user_id: str) -> None:
        _check_kind(kind)
        with self._locked(key):
            doc = self._read(key)
            if doc is None:
                return
            users = doc.get("marks", {}).get(job_id, {}).get(kind, [])
            if user_id in users:
                users.remove(user_id)
                self._write(key, doc)

    def get_marks(self, key: str) -> Marks:
        with self._locked(key, exclusive=False):
            doc = self._read(key)
        if doc is None:
            return {}
        return {
            job_id: {kind: set(users) for kind, users in kinds.items()}
            for job_id, kinds in doc.get("marks", {}).items()
        }

    def _path(self, key: str) -> Path:
        return self.root / f"{hashlib.sha256(key.encode('utf-8')).hexdigest()}.json"

    @contextmanager
    def _locked(self, key: str, exclusive: bool = True) -> Iterator[None]:
        lock_path = self._path(key).with_suffix(".lock")
        try:
            f = open(lock_path, "a+", encoding="utf-8")
        except OSError as exc:
            raise CacheUnavailable(f"cannot open lock {lock_path.name}: {exc}") from exc
        try:
            _lock(f, exclusive)
            yield
        finally:
            _unlock(f)
            f.close()

    def _read(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except ValueError as exc:
            log.warning("Discarding corrupt cache file %s: %s", path.name, exc)
            return None
        except OSError as exc:
            raise CacheUnavailable(f"cannot read {path.name}: {exc}") from exc

    def _write(self, key: str, doc: dict[str, Any]) -> None:
        path = self._path(key)
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self.root, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f)
            os.replace(tmp, path)
            tmp = None
        except OSError as exc:
            raise CacheUnavailable(f"cannot write {path.name}: {exc}") from exc
        finally:
            if tmp is not None:
                try:
                    os.unlink(tmp)
                except FileNotFoundError:
                    pass
