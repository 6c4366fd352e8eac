import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional


logger = logging.getLogger("viros.persistence")

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


class StorageError(Exception):
    pass


class QuotaExceededError(StorageError):
    pass


def estimate_bytes(key: str, value: str) -> int:
    # browsers store UTF-16, two bytes per code unit
    return (len(key) + len(value)) * 2


class LocalStorage:
    """String key/value store with a hard byte quota.

    With a ``path`` the whole map is kept in one JSON file and rewritten
    atomically on every change; without one it lives in memory only.
    """

    def __init__(self, path: Optional[Path] = None, quota_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
        self.path = Path(path) if path is not None else None
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}
        if self.path is not None and self.path.exists():
            self._data = self._load(self.path)

    @staticmethod
    def _load(path: Path) -> Dict[str, str]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        if not isinstance(raw, dict) or not all(isinstance(v, str) for v in raw.values()):
            raise StorageError(f"{path} does not hold a string map")
        return {str(key): value for key, value in raw.items()}

    def usage_bytes(self) -> int:
        return sum(estimate_bytes(key, value) for key, value in self._data.items())

    def keys(self) -> List[str]:
        return list(self._data)

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        previous = self._data.get(key)
        projected = self.usage_bytes() + estimate_bytes(key, value)
        if previous is not None:
            projected -= estimate_bytes(key, previous)
        if projected > self.quota_bytes:
            raise QuotaExceededError(
                f"Setting '{key}' would use {projected} bytes (quota {self.quota_bytes})"
            )

        self._data[key] = value
        try:
            self._flush()
        except StorageError:
            if previous is None:
                del self._data[key]
            else:
                self._data[key] = previous
            raise

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        self._data.clear()
        self._flush()

    def _flush(self) -> None:
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(self.path.parent),
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as temp_file:
                json.dump(self._data, temp_file)
                temp_path = Path(temp_file.name)
            os.replace(temp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Failed to write {self.path}: {exc}") from exc
        finally:
            if temp_path is not None and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    logger.warning("could not remove temp file %s", temp_path)
