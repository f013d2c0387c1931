"""Persistence of the notified-set: appointment ids that already triggered a reminder.

The set lives under one key of a per-profile key/value store. Reads and writes
are defensive: a missing or corrupt value reads as an empty set and a failed
write is ignored, so reminders degrade to "maybe notify again" rather than
breaking the scheduler.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from config.config import NOTIFIED_STORAGE_KEY
from zncrm.utils.logger import log_debug, log_warning


class NotifiedStore(Protocol):
    """Storage for the notified-set."""

    def load(self) -> List[str]:
        """Return the stored ids in stored order, without duplicates."""
        ...

    def save(self, ids: Iterable[str]) -> None:
        """Replace the stored ids."""
        ...


def _unique_ids(values: Iterable[Any]) -> List[str]:
    seen = {}
    for value in values:
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            seen.setdefault(str(value), None)
    return list(seen)


class InMemoryNotifiedStore:
    """Notified-set kept in process memory; lost on restart."""

    def __init__(self, ids: Optional[Iterable[str]] = None):
        self._ids: List[str] = _unique_ids(ids or [])
        self.save_count = 0

    def load(self) -> List[str]:
        return list(self._ids)

    def save(self, ids: Iterable[str]) -> None:
        self._ids = _unique_ids(ids)
        self.save_count += 1


class JsonFileNotifiedStore:
    """Notified-set stored under a key of a JSON profile state file.

    The file is a JSON object shared with other per-profile keys; only
    ``key`` is read or replaced.
    """

    def __init__(self, path: Union[str, Path], key: str = NOTIFIED_STORAGE_KEY):
        self.path = Path(path).expanduser()
        self.key = key

    def _read_state(self) -> Optional[Dict[str, Any]]:
        """Return the state object; None when the file exists but cannot be read."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            log_warning(f"Could not read {self.path}: {e}")
            return None

        try:
            state = json.loads(raw)
        except ValueError as e:
            log_debug(f"Ignoring unparsable state file {self.path}: {e}")
            return {}
        return state if isinstance(state, dict) else {}

    def load(self) -> List[str]:
        value = (self._read_state() or {}).get(self.key)
        if not isinstance(value, list):
            return []
        return _unique_ids(value)

    def save(self, ids: Iterable[str]) -> None:
        state = self._read_state()
        if state is None:
            # Rewriting would drop the other keys we could not read
            log_warning(f"Not writing notified-set, {self.path} is unreadable")
            return
        state[self.key] = _unique_ids(ids)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(state, f)
                os.replace(tmp_name, self.path)
            except OSError:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            log_warning(f"Could not write notified-set to {self.path}: {e}")
