"""Namespaced key-value persistence backed by a single JSON document."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


def _replace_document(path: Path, document: Mapping[str, Any]) -> None:
    # encoded up front: an unserializable value must leave the file untouched
    encoded = json.dumps(document, indent=2, sort_keys=True).encode("utf-8")
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(path.name + ".tmp")
    fd = os.open(staging, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        os.write(fd, encoded)
        os.fsync(fd)
    finally:
        os.close(fd)
    os.replace(staging, path)


class JsonFileStore:
    """Key-value store persisted as one JSON object on disk.

    The document is re-read on every access so several stores pointed at the
    same file observe each other's writes. Reads of a missing or corrupt file
    behave like an empty store. Write failures are logged and reported via the
    boolean return value; they never raise.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def _read_all(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: expected a JSON object", self.path)
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._read_all())

    def update(self, values: Mapping[str, Any], remove: Iterable[str] = ()) -> bool:
        """Set ``values`` and drop ``remove`` keys in a single atomic write."""

        data = self._read_all()
        data.update(values)
        for key in remove:
            data.pop(key, None)
        try:
            _replace_document(self.path, data)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to persist state to %s: %s", self.path, exc)
            return False
        return True

    def set(self, key: str, value: Any) -> bool:
        return self.update({key: value})

    def delete(self, *keys: str) -> bool:
        return self.update({}, remove=keys)


def namespaced(prefix: str, suffix: Optional[object] = None) -> str:
    if suffix is None:
        return prefix
    return f"{prefix}.{suffix}"
