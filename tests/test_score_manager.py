"""
Unit tests for high-score persistence.
"""
import json
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from devquiz.score_manager import (
    HIGH_SCORE_KEY,
    HighScoreManager,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    StoreUnavailableError,
)


class TestHighScoreManager(unittest.TestCase):
    """Test cases for best-score comparison and degradation."""

    def test_key_name(self):
        self.assertEqual(HIGH_SCORE_KEY, "quizHighScore")

    def test_load_best_when_never_recorded(self):
        self.assertIsNone(HighScoreManager(MemoryStore()).load_best())

    def test_load_best_returns_stored_value(self):
        self.assertEqual(HighScoreManager(MemoryStore({HIGH_SCORE_KEY: 70})).load_best(), 70)

    def test_load_best_parses_numeric_strings(self):
        self.assertEqual(HighScoreManager(MemoryStore({HIGH_SCORE_KEY: "85"})).load_best(), 85)

    def test_load_best_ignores_corrupt_values(self):
        for corrupt in ("abc", [1], True, float("inf"), float("-inf"), float("nan")):
            with self.subTest(value=corrupt):
                self.assertIsNone(HighScoreManager(MemoryStore({HIGH_SCORE_KEY: corrupt})).load_best())

    def test_first_positive_score_is_record(self):
        store = MemoryStore()
        self.assertTrue(HighScoreManager(store).record_if_best(40))
        self.assertEqual(store.get(HIGH_SCORE_KEY), 40)

    def test_first_zero_score_is_not_record(self):
        store = MemoryStore()
        self.assertFalse(HighScoreManager(store).record_if_best(0))
        self.assertIsNone(store.get(HIGH_SCORE_KEY))

    def test_lower_score_keeps_best(self):
        store = MemoryStore({HIGH_SCORE_KEY: 70})
        self.assertFalse(HighScoreManager(store).record_if_best(65))
        self.assertEqual(store.get(HIGH_SCORE_KEY), 70)

    def test_equal_score_is_not_record(self):
        store = MemoryStore({HIGH_SCORE_KEY: 70})
        self.assertFalse(HighScoreManager(store).record_if_best(70))

    def test_higher_score_replaces_best(self):
        store = MemoryStore({HIGH_SCORE_KEY: 70})
        manager = HighScoreManager(store)
        self.assertTrue(manager.record_if_best(85))
        self.assertEqual(manager.load_best(), 85)

    def test_corrupt_value_treated_as_zero(self):
        store = MemoryStore({HIGH_SCORE_KEY: "garbage"})
        self.assertTrue(HighScoreManager(store).record_if_best(10))
        self.assertEqual(store.get(HIGH_SCORE_KEY), 10)

    def test_unavailable_store_degrades(self):
        store = MemoryStore({HIGH_SCORE_KEY: 10})
        store.available = False
        manager = HighScoreManager(store)

        with self.assertLogs('devquiz.score_manager', level='WARNING') as captured:
            self.assertIsNone(manager.load_best())
            self.assertFalse(manager.record_if_best(90))
        self.assertTrue(all(r.event_type == 'high_score_store_unavailable' for r in captured.records))

    def test_write_failure_degrades(self):
        store = Mock(spec=KeyValueStore)
        store.get.return_value = 10
        store.set.side_effect = StoreUnavailableError("disk full")
        self.assertFalse(HighScoreManager(store).record_if_best(90))

    def test_record_logs_structured_event(self):
        with self.assertLogs('devquiz.score_manager', level='INFO') as captured:
            HighScoreManager(MemoryStore()).record_if_best(55)
        record = captured.records[-1]
        self.assertEqual(record.event_type, 'high_score_recorded')
        self.assertEqual(record.percentage, 55)
        self.assertIsNone(record.previous)

    def test_custom_key(self):
        store = MemoryStore()
        HighScoreManager(store, key="other").record_if_best(30)
        self.assertEqual(store.get("other"), 30)
        self.assertIsNone(store.get(HIGH_SCORE_KEY))


class TestJsonFileStore(unittest.TestCase):
    """Test cases for the JSON file backed store."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.file_path = Path(self.temp_dir) / "nested" / "high_score.json"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file_reads_none(self):
        self.assertIsNone(JsonFileStore(str(self.file_path)).get(HIGH_SCORE_KEY))

    def test_set_creates_file_and_persists(self):
        store = JsonFileStore(str(self.file_path))
        store.set(HIGH_SCORE_KEY, 80)

        with open(self.file_path, 'r', encoding='utf-8') as f:
            self.assertEqual(json.load(f), {HIGH_SCORE_KEY: 80})
        self.assertEqual(JsonFileStore(str(self.file_path)).get(HIGH_SCORE_KEY), 80)

    def test_set_preserves_other_keys(self):
        self.file_path.parent.mkdir(parents=True)
        self.file_path.write_text(json.dumps({"other": 1}))
        JsonFileStore(str(self.file_path)).set(HIGH_SCORE_KEY, 50)
        self.assertEqual(json.loads(self.file_path.read_text()), {"other": 1, HIGH_SCORE_KEY: 50})

    def test_invalid_json_is_unavailable(self):
        self.file_path.parent.mkdir(parents=True)
        self.file_path.write_text("{ not json")
        with self.assertRaises(StoreUnavailableError):
            JsonFileStore(str(self.file_path)).get(HIGH_SCORE_KEY)

    def test_non_utf8_bytes_are_unavailable(self):
        self.file_path.parent.mkdir(parents=True)
        for raw in (b'\xff\xfe\x00', b'{"quizHighScore": "\xff\xfe"}'):
            with self.subTest(raw=raw):
                self.file_path.write_bytes(raw)
                with self.assertRaises(StoreUnavailableError):
                    JsonFileStore(str(self.file_path)).get(HIGH_SCORE_KEY)

    def test_non_object_is_unavailable(self):
        self.file_path.parent.mkdir(parents=True)
        self.file_path.write_text("[1, 2]")
        with self.assertRaises(StoreUnavailableError):
            JsonFileStore(str(self.file_path)).get(HIGH_SCORE_KEY)

    def test_write_error_is_unavailable(self):
        store = JsonFileStore(str(self.file_path))
        with patch('builtins.open', side_effect=PermissionError("read-only")):
            with self.assertRaises(StoreUnavailableError):
                store.set(HIGH_SCORE_KEY, 10)

    def test_manager_over_file_store(self):
        manager = HighScoreManager(JsonFileStore(str(self.file_path)))
        self.assertTrue(manager.record_if_best(70))
        self.assertFalse(manager.record_if_best(65))
        self.assertTrue(manager.record_if_best(85))
        self.assertEqual(HighScoreManager(JsonFileStore(str(self.file_path))).load_best(), 85)

    def test_manager_over_corrupt_file_degrades(self):
        self.file_path.parent.mkdir(parents=True)
        self.file_path.write_text("corrupt")
        manager = HighScoreManager(JsonFileStore(str(self.file_path)))
        self.assertIsNone(manager.load_best())
        self.assertFalse(manager.record_if_best(100))

    def test_manager_over_non_utf8_file_degrades(self):
        self.file_path.parent.mkdir(parents=True)
        self.file_path.write_bytes(b'{"quizHighScore": "\xff\xfe"}')
        manager = HighScoreManager(JsonFileStore(str(self.file_path)))
        with self.assertLogs('devquiz.score_manager', level='WARNING'):
            self.assertIsNone(manager.load_best())
            self.assertFalse(manager.record_if_best(100))
        self.assertEqual(self.file_path.read_bytes(), b'{"quizHighScore": "\xff\xfe"}')

    def test_manager_over_infinite_value_treats_it_as_absent(self):
        self.file_path.parent.mkdir(parents=True)
        self.file_path.write_text('{"quizHighScore": Infinity}')
        manager = HighScoreManager(JsonFileStore(str(self.file_path)))
        self.assertIsNone(manager.load_best())
        self.assertTrue(manager.record_if_best(30))
        self.assertEqual(manager.load_best(), 30)


if __name__ == '__main__':
    unittest.main()
