"""
Question bank loading, validation and per-session question selection.
"""
import json
import os
import logging
from typing import Dict, List, Optional
from pathlib import Path

from .models import Answer, Difficulty, Question


# Maximum number of questions drawn per session for each difficulty tier
TIER_CAPS: Dict[Difficulty, int] = {
    Difficulty.BEGINNER: 10,
    Difficulty.INTERMEDIATE: 7,
    Difficulty.ADVANCED: 5,
}

BUNDLED_BANK_PATH = Path(__file__).parent / "data" / "question_bank.json"

logger = logging.getLogger(__name__)


class QuestionRepository:
    """Read-only view over the loaded question bank."""

    def __init__(self, questions: Optional[List[Question]] = None):
        self._questions: List[Question] = list(questions or [])

    def __len__(self) -> int:
        return len(self._questions)

    def select_questions(self, category: str, difficulty) -> List[Question]:
        """
        Select the questions matching a category and difficulty, capped by tier.

        Args:
            category: Category tag, matched exactly
            difficulty: Difficulty member or its string value

        Returns:
            Matching questions in bank order, at most TIER_CAPS[difficulty] of them.
            An unknown difficulty or category yields an empty list.
        """
        tier = Difficulty.parse(difficulty)
        if tier is None:
            logger.warning(f"Unknown difficulty requested: {difficulty!r}")
            return []

        matches = [
            question for question in self._questions
            if question.category == category and question.difficulty is tier
        ]
        return matches[:TIER_CAPS[tier]]

    def count(self, category: str, difficulty) -> int:
        """Number of matching questions before the tier cap is applied."""
        tier = Difficulty.parse(difficulty)
        if tier is None:
            return 0
        return sum(
            1 for question in self._questions
            if question.category == category and question.difficulty is tier
        )

    def categories(self) -> List[str]:
        return sorted({question.category for question in self._questions})


class QuestionBankLoader:
    """Loads and validates JSON question bank files."""

    def __init__(self, bank_directory: Optional[str] = None):
        """
        Initialize the loader.

        Args:
            bank_directory: Directory with extra bank files, or None to use
                only the bundled bank
        """
        self.bank_directory = Path(bank_directory) if bank_directory else None
        self.logger = logging.getLogger(__name__)
        self.loaded_files: Dict[str, int] = {}
        self.load_errors: List[str] = []
        self.fallback_bank_created = False

    def load(self) -> QuestionRepository:
        """
        Load every bank file and return a repository over the merged questions.

        Files that fail validation are skipped and reported through
        get_load_errors(). When nothing loads from the configured directory
        the bundled bank is used, and when that fails too a minimal
        in-memory bank is returned.
        """
        self.loaded_files.clear()
        self.load_errors.clear()
        self.fallback_bank_created = False

        questions: List[Question] = []

        if self.bank_directory is not None:
            scan_result = self._scan_bank_files()
            if not scan_result['success']:
                self.load_errors.append(scan_result['error'])
            elif not scan_result['files']:
                self.logger.warning(f"No JSON files found in {self.bank_directory}")
                self.load_errors.append(f"No question bank files found in {self.bank_directory}")

            for json_file in scan_result['files']:
                load_result = self._load_bank_file_safely(json_file)
                if load_result['success']:
                    questions.extend(load_result['questions'])
                else:
                    self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        if not questions:
            load_result = self._load_bank_file_safely(BUNDLED_BANK_PATH)
            if load_result['success']:
                questions = load_result['questions']
            else:
                self.load_errors.append(f"bundled bank: {load_result['error']}")
                questions = self._create_fallback_bank()

        self.logger.info(f"Question bank ready with {len(questions)} questions "
                         f"from {len(self.loaded_files)} files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return QuestionRepository(questions)

    def _scan_bank_files(self) -> Dict[str, any]:
        """
        Scan the bank directory for JSON files.

        Returns:
            Dictionary with success status, files list, and error message if applicable
        """
        try:
            if not self.bank_directory.is_dir():
                return {
                    'success': False,
                    'error': f"Question bank directory not found: {self.bank_directory}",
                    'files': []
                }
            return {
                'success': True,
                'files': sorted(self.bank_directory.glob("*.json"))
            }
        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot read directory {self.bank_directory}",
                'files': []
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error scanning {self.bank_directory}: {e}",
                'files': []
            }

    def _load_bank_file_safely(self, json_file: Path) -> Dict[str, any]:
        """
        Load a single bank file with error handling.

        Returns:
            Dictionary with success status and either the parsed questions or an error
        """
        if not json_file.exists():
            return {'success': False, 'error': "File not found"}

        if not os.access(json_file, os.R_OK):
            return {'success': False, 'error': "Permission denied: Cannot read file"}

        file_size = json_file.stat().st_size
        max_size = 10 * 1024 * 1024  # 10MB limit
        if file_size > max_size:
            return {
                'success': False,
                'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). Maximum size is {max_size / 1024 / 1024}MB"
            }

        bank_data = self._load_single_file(json_file)
        if bank_data is None:
            return {'success': False, 'error': "Invalid JSON structure or validation failed"}

        questions = self._parse_questions(bank_data)
        self.loaded_files[json_file.name] = len(questions)
        self.logger.info(f"Loaded bank file '{json_file.name}' with {len(questions)} questions")
        return {'success': True, 'questions': questions}

    def _load_single_file(self, file_path: Path) -> Optional[dict]:
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {file_path}: {e}")
            return None
        except UnicodeDecodeError as e:
            self.logger.error(f"Bank file {file_path} is not valid UTF-8: {e}")
            return None
        except OSError as e:
            self.logger.error(f"Failed to read bank file {file_path}: {e}")
            return None

        if not self.validate_bank_structure(data):
            self.logger.error(f"Invalid question bank structure in {file_path}")
            return None
        return data

    def validate_bank_structure(self, data: dict) -> bool:
        """
        Validate that JSON data has the question bank structure.

        Expected structure:
        {
            "bank": [
                {
                    "category": str,
                    "difficulty": "beginner" | "intermediate" | "advanced",
                    "prompt": str,
                    "answers": [{"text": str, "is_correct": bool}, ...],
                    "explanation": str  # Optional
                }
            ]
        }

        Args:
            data: Parsed JSON data to validate

        Returns:
            True if structure is valid, False otherwise
        """
        if not isinstance(data, dict):
            self.logger.error("Question bank must be a JSON object")
            return False

        if "bank" not in data:
            self.logger.error("Question bank must contain a 'bank' key")
            return False

        bank = data["bank"]
        if not isinstance(bank, list):
            self.logger.error("'bank' value must be an array")
            return False

        if not bank:
            self.logger.error("Question bank cannot be empty")
            return False

        for i, question_data in enumerate(bank):
            if not isinstance(question_data, dict):
                self.logger.error(f"Question {i} must be an object")
                return False

            for key in ("category", "difficulty", "prompt"):
                if not isinstance(question_data.get(key), str):
                    self.logger.error(f"Question {i} '{key}' field must be a string")
                    return False

            if Difficulty.parse(question_data["difficulty"]) is None:
                self.logger.error(f"Question {i} has unknown difficulty '{question_data['difficulty']}'")
                return False

            answers = question_data.get("answers")
            if not isinstance(answers, list) or not answers:
                self.logger.error(f"Question {i} 'answers' field must be a non-empty array")
                return False

            for j, answer_data in enumerate(answers):
                if not isinstance(answer_data, dict) or not isinstance(answer_data.get("text"), str):
                    self.logger.error(f"Question {i} answer {j} must be an object with a 'text' string")
                    return False
                if not isinstance(answer_data.get("is_correct", False), bool):
                    self.logger.error(f"Question {i} answer {j} 'is_correct' must be a boolean")
                    return False

            if "explanation" in question_data and not isinstance(question_data["explanation"], str):
                self.logger.error(f"Question {i} 'explanation' field must be a string")
                return False

        return True

    def _parse_questions(self, bank_data: dict) -> List[Question]:
        return [
            Question(
                category=question_data["category"],
                difficulty=Difficulty.parse(question_data["difficulty"]),
                prompt=question_data["prompt"],
                answers=tuple(
                    Answer(text=answer["text"], is_correct=answer.get("is_correct", False))
                    for answer in question_data["answers"]
                ),
                explanation=question_data.get("explanation")
            )
            for question_data in bank_data["bank"]
        ]

    def _create_fallback_bank(self) -> List[Question]:
        """Create a minimal in-memory bank when every file failed to load."""
        self.fallback_bank_created = True
        self.logger.warning("Created fallback question bank due to file loading failures")
        return [
            Question(
                category="general",
                difficulty=Difficulty.BEGINNER,
                prompt="What should you check when the question bank can't be loaded?",
                answers=(
                    Answer("The bank directory and file permissions", True),
                    Answer("Nothing, it fixes itself", False),
                ),
                explanation="Bank files must be readable JSON with a 'bank' array."
            )
        ]

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def is_fallback_bank_active(self) -> bool:
        return self.fallback_bank_created

    def get_loading_summary(self) -> Dict[str, any]:
        """
        Get a summary of the last load operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'loaded_files': dict(self.loaded_files),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'fallback_active': self.is_fallback_bank_active(),
            'bank_directory': str(self.bank_directory) if self.bank_directory else None,
        }
