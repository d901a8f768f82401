"""
local_cache.py

String-keyed JSON store that stands in for browser local storage. Each key is
kept in its own file under the store directory, so a failed write on one key
leaves the others as they were.
"""
import json
import os
from typing import Any

from app_logger import get_logger

log = get_logger("cache")


class LocalCache:
    def __init__(self, root: str):
        self.root = root
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.root, f"{key}.json")

    def has(self, key: str) -> bool:
        return os.path.exists(self._path(key))

    def load(self, key: str, default: Any = None) -> Any:
        """Return the stored value for key, or default when it is absent or unreadable."""
        path = self._path(key)
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable cache entry %s: %s", key, e)
            return default

    def save(self, key: str, value: Any) -> None:
        with open(self._path(key), "w", encoding="utf-8") as f:
            json.dump(value, f)

    def remove(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
