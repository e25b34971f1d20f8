"""
High-score persistence for devquiz.

The best percentage is a single scalar stored under HIGH_SCORE_KEY in a
simple key-value store. Tracking it is a non-critical enhancement, so store
failures degrade to "no record" instead of propagating.
"""
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

HIGH_SCORE_KEY = "quizHighScore"

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the backing key-value store cannot be read or written."""
    pass


class KeyValueStore:
    """Minimal get/set-by-key persistence interface."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """In-process store, used for tests and when no file is configured."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})
        self.available = True

    def get(self, key: str) -> Optional[Any]:
        if not self.available:
            raise StoreUnavailableError("Memory store marked unavailable")
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        if not self.available:
            raise StoreUnavailableError("Memory store marked unavailable")
        self._data[key] = value


class JsonFileStore(KeyValueStore):
    """Key-value store persisted as a single JSON object on disk."""

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)

    def _read_all(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            return {}
        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StoreUnavailableError(f"Invalid JSON in {self.file_path}: {e}") from e
        except OSError as e:
            raise StoreUnavailableError(f"Failed to read {self.file_path}: {e}") from e

        if not isinstance(data, dict):
            raise StoreUnavailableError(f"{self.file_path} does not contain a JSON object")
        return data

    def get(self, key: str) -> Optional[Any]:
        return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise StoreUnavailableError(f"Failed to write {self.file_path}: {e}") from e


class HighScoreManager:
    """Reads and updates the persisted best percentage."""

    def __init__(self, store: KeyValueStore, key: str = HIGH_SCORE_KEY):
        self.store = store
        self.key = key
        self.logger = logging.getLogger(__name__)

    def load_best(self) -> Optional[int]:
        """
        Return the stored best percentage, or None if never recorded.

        Unreadable stores and corrupt values are reported as None.
        """
        try:
            raw_value = self.store.get(self.key)
        except StoreUnavailableError as e:
            self._log_store_failure("load_best", e)
            return None
        return self._parse(raw_value)

    def record_if_best(self, percentage: int) -> bool:
        """
        Persist percentage if it strictly beats the stored best.

        A missing record counts as 0, so a first session scoring 0 is not a
        new record.

        Returns:
            True if the stored record changed, False otherwise (including when
            the store is unavailable)
        """
        try:
            current = self._parse(self.store.get(self.key))
        except StoreUnavailableError as e:
            self._log_store_failure("record_if_best", e)
            return False

        if percentage <= (current or 0):
            return False

        try:
            self.store.set(self.key, percentage)
        except StoreUnavailableError as e:
            self._log_store_failure("record_if_best", e)
            return False

        self.logger.info(
            f"New high score recorded: {percentage}% (previous: {current})",
            extra={
                'event_type': 'high_score_recorded',
                'percentage': percentage,
                'previous': current,
                'timestamp': time.time()
            }
        )
        return True

    def _parse(self, raw_value: Any) -> Optional[int]:
        if raw_value is None or isinstance(raw_value, bool):
            return None
        try:
            return int(raw_value)
        except (TypeError, ValueError, OverflowError):
            self.logger.warning(f"Ignoring corrupt high score value: {raw_value!r}")
            return None

    def _log_store_failure(self, operation: str, error: Exception) -> None:
        self.logger.warning(
            f"High score store unavailable during {operation}: {error}",
            extra={
                'event_type': 'high_score_store_unavailable',
                'operation': operation,
                'error_message': str(error),
                'timestamp': time.time()
            }
        )
