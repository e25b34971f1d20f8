"""
Core data models for the devquiz quiz session.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class Difficulty(Enum):
    """Difficulty tiers a question can belong to."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value) -> Optional["Difficulty"]:
        """Return the matching tier for a string (case-insensitive), or None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Answer:
    """A single selectable answer of a question."""
    text: str
    is_correct: bool = False


@dataclass(frozen=True)
class Question:
    """Represents a single multiple-choice quiz question."""
    category: str
    difficulty: Difficulty
    prompt: str
    answers: Tuple[Answer, ...] = ()
    explanation: Optional[str] = None

    @property
    def correct_answers(self) -> List[Answer]:
        return [answer for answer in self.answers if answer.is_correct]


class Phase(Enum):
    """Enumeration of quiz session phases."""
    SETUP = "setup"
    PRESENTING = "presenting"
    AWAITING_ANSWER = "awaiting_answer"
    REVEALED = "revealed"
    COMPLETE = "complete"


class FeedbackTone(Enum):
    """Feedback tone requested from the presentation layer."""
    CORRECT = "correct"
    WRONG = "wrong"


@dataclass
class TimerSettings:
    """Per-question countdown configuration."""
    enabled: bool = True
    duration_seconds: int = 15
    warning_threshold_seconds: int = 5


@dataclass(frozen=True)
class AnswerRecord:
    """Outcome of one resolved question."""
    question: Question
    selected: Optional[Answer]
    is_correct: bool
    timed_out: bool = False


@dataclass
class SessionState:
    """Mutable state of one quiz session, owned by a QuizSession."""
    category: str
    difficulty: Optional[Difficulty]
    question_set: List[Question] = field(default_factory=list)
    current_index: int = 0
    score: int = 0
    time_left: int = 0
    phase: Phase = Phase.SETUP
    displayed_answers: List[Answer] = field(default_factory=list)
    history: List[AnswerRecord] = field(default_factory=list)
    best_score: Optional[int] = None

    @property
    def total_questions(self) -> int:
        return len(self.question_set)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.question_set):
            return self.question_set[self.current_index]
        return None


@dataclass(frozen=True)
class SessionResult:
    """Final score of a completed session."""
    score: int
    total: int
    percentage: int
    is_new_record: bool

    @property
    def should_celebrate(self) -> bool:
        return self.percentage >= 80 or self.is_new_record

    def summary(self) -> str:
        text = f"Quiz Complete! Your score: {self.score}/{self.total} ({self.percentage}%)"
        if self.is_new_record:
            text += " New High Score!"
        return text
