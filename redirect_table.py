from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

log = logging.getLogger(__name__)

DEFAULT_STATUS_CODE = 302


class ConfigError(ValueError):
    """Raised when a configuration document cannot be decoded."""


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Waiting writers block new readers, so a steady flow of lookups cannot
    starve a PUT or DELETE.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def parse_config(document: Union[str, bytes]) -> Dict[str, str]:
    """Decode ``{"redirections": {...}}`` into a plain source -> destination dict.

    A document that is valid JSON but carries no ``redirections`` object
    yields an empty dict. Invalid JSON, or a non-string destination,
    raises :class:`ConfigError`.
    """
    try:
        data: Any = json.loads(document)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        return {}
    redirections = data.get("redirections")
    if not isinstance(redirections, dict):
        return {}

    for source, destination in redirections.items():
        if not isinstance(destination, str):
            raise ConfigError(
                f"destination for {source!r} must be a string, "
                f"got {type(destination).__name__}"
            )
    return dict(redirections)


class RedirectTable:
    """Path -> destination mapping shared by all request handlers.

    Every mutation runs under the write lock. ``load_merge`` validates the
    whole document first and then applies it in a single write-lock
    acquisition, so readers never see part of a merge.
    """

    def __init__(self, status_code: int = DEFAULT_STATUS_CODE) -> None:
        self._status_code = status_code
        self._lock = ReadWriteLock()
        self._entries: Dict[str, str] = {}

    @property
    def status_code(self) -> int:
        return self._status_code

    def lookup(self, path: str) -> Optional[str]:
        with self._lock.read_locked():
            return self._entries.get(path)

    def put(self, path: str, destination: str) -> None:
        with self._lock.write_locked():
            self._entries[path] = destination

    def delete(self, path: str) -> None:
        with self._lock.write_locked():
            self._entries.pop(path, None)

    def clear(self) -> None:
        with self._lock.write_locked():
            self._entries.clear()

    def load_merge(self, document: Union[str, bytes]) -> int:
        """Merge a configuration document; returns how many entries it held."""
        redirections = parse_config(document)
        with self._lock.write_locked():
            self._entries.update(redirections)
            total = len(self._entries)
        log.info("%d redirections loaded (%d total)", len(redirections), total)
        return len(redirections)

    def load_file(self, path: Union[str, Path]) -> int:
        document = Path(path).read_bytes()
        return self.load_merge(document)

    def snapshot(self) -> Dict[str, str]:
        with self._lock.read_locked():
            return dict(self._entries)

    def serialize(self) -> str:
        return json.dumps(
            {"redirections": self.snapshot()}, indent=2, sort_keys=True
        )

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock.read_locked():
            return path in self._entries
