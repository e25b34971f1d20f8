"""
Quiz session controller for devquiz.

A QuizSession owns exactly one SessionState and moves it through
Setup -> Presenting -> AwaitingAnswer -> Revealed -> (Presenting | Complete).
All transitions run to completion on the caller's thread; the countdown
timer feeds its events back through the same transition methods.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from .models import (
    Answer,
    AnswerRecord,
    Difficulty,
    FeedbackTone,
    Phase,
    Question,
    SessionResult,
    SessionState,
    TimerSettings,
)
from .quiz_engine import QuizEngine, QuizTimer, TimerHandle
from .score_manager import HighScoreManager


def compute_percentage(score: int, total: int) -> int:
    """Percentage of correct answers rounded half-up; 0 for an empty session."""
    if total <= 0:
        return 0
    return (200 * score + total) // (2 * total)


class SessionListener:
    """
    Presentation hooks called by QuizSession.

    Every hook is a no-op by default; a UI layer overrides the ones it renders.
    Hooks must not block: they run inside the transition that triggered them.
    """

    def on_question_presented(self, question: Question, shuffled_answers: List[Answer]) -> None:
        pass

    def on_answer_result(self, selected_answer: Answer, is_correct: bool, explanation: Optional[str]) -> None:
        pass

    def on_tick(self, seconds_remaining: int) -> None:
        pass

    def on_timeout(self) -> None:
        pass

    def on_feedback(self, tone: FeedbackTone) -> None:
        pass

    def on_session_complete(self, score: int, total: int, percentage: int, is_new_record: bool) -> None:
        pass


class QuizSession:
    """
    Drives a single quiz session.

    Out-of-order calls (answering outside AwaitingAnswer, advancing outside
    Revealed) are rejected: they return False and leave the state untouched.
    Sessions with the timer enabled must be driven from a running asyncio
    event loop.
    """

    def __init__(
        self,
        engine: QuizEngine,
        score_manager: HighScoreManager,
        listener: Optional[SessionListener] = None,
        timer_settings: Optional[TimerSettings] = None,
        session_id: str = "local",
        tick_interval: float = 1.0
    ):
        """
        Initialize the session controller.

        Args:
            engine: Draws questions and shuffles answers
            score_manager: Persists the best percentage
            listener: Presentation hooks, defaults to no-ops
            timer_settings: Countdown configuration, defaults to 15s with a 5s warning
            session_id: Identifier used in log records
            tick_interval: Real seconds per countdown second
        """
        self.logger = logging.getLogger(__name__)
        self.engine = engine
        self.score_manager = score_manager
        self.listener = listener or SessionListener()
        self.timer_settings = timer_settings or TimerSettings()
        self.session_id = str(session_id)

        self._timer = QuizTimer(self._handle_tick, self._handle_expire, self.session_id, tick_interval)
        self._timer_handle: Optional[TimerHandle] = None
        self._state: Optional[SessionState] = None
        self._result: Optional[SessionResult] = None

    @property
    def state(self) -> Optional[SessionState]:
        return self._state

    @property
    def phase(self) -> Optional[Phase]:
        return self._state.phase if self._state else None

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result

    @property
    def history(self) -> List[AnswerRecord]:
        return list(self._state.history) if self._state else []

    @property
    def displayed_answers(self) -> List[Answer]:
        return list(self._state.displayed_answers) if self._state else []

    @property
    def timer_warning(self) -> bool:
        """True while the countdown is at or under the warning threshold."""
        return (
            self._state is not None
            and self.timer_settings.enabled
            and self._state.phase is Phase.AWAITING_ANSWER
            and self._state.time_left <= self.timer_settings.warning_threshold_seconds
        )

    def configure(self, category: str, difficulty) -> None:
        """
        Enter Setup with a brand-new state for the given selection.

        Any session in progress is abandoned; nothing carries over.
        """
        self._cancel_timer()
        self._result = None
        self._state = SessionState(category=category, difficulty=Difficulty.parse(difficulty))

        self.logger.info(
            f"Session {self.session_id} configured: category='{category}', difficulty='{difficulty}'",
            extra={
                'event_type': 'session_configured',
                'session_id': self.session_id,
                'category': category,
                'difficulty': str(difficulty),
                'timestamp': time.time()
            }
        )

    def start(self) -> bool:
        """
        Draw the question set and present the first question.

        A selection with no matching questions completes immediately with 0%.

        Returns:
            True if the session started, False if not in Setup
        """
        if not self._accepts("start", Phase.SETUP):
            return False

        state = self._state
        state.question_set = self.engine.draw_questions(state.category, state.difficulty)
        state.current_index = 0
        state.score = 0
        state.best_score = self.score_manager.load_best()

        self.logger.info(
            f"Session {self.session_id} started with {state.total_questions} questions",
            extra={
                'event_type': 'session_started',
                'session_id': self.session_id,
                'total_questions': state.total_questions,
                'best_score': state.best_score,
                'timestamp': time.time()
            }
        )

        if not state.question_set:
            self._complete()
        else:
            self._present()
        return True

    def submit_answer(self, answer_ref) -> bool:
        """
        Resolve the current question with the user's selection.

        Args:
            answer_ref: Index into the displayed answers, or the Answer itself

        Returns:
            True if the answer was applied, False if rejected
        """
        if not self._accepts("submit_answer", Phase.AWAITING_ANSWER):
            return False

        answer = self._resolve_answer(answer_ref)
        if answer is None:
            self._log_rejection("submit_answer", f"unknown answer reference {answer_ref!r}")
            return False

        self._cancel_timer()
        state = self._state
        question = state.current_question
        is_correct = answer.is_correct
        if is_correct:
            state.score += 1

        state.history.append(AnswerRecord(question=question, selected=answer, is_correct=is_correct))
        state.phase = Phase.REVEALED

        self.logger.debug(
            f"Session {self.session_id} answered question {state.current_index + 1}: correct={is_correct}",
            extra={
                'event_type': 'answer_submitted',
                'session_id': self.session_id,
                'question_number': state.current_index + 1,
                'is_correct': is_correct,
                'score': state.score,
                'timestamp': time.time()
            }
        )

        self.listener.on_feedback(FeedbackTone.CORRECT if is_correct else FeedbackTone.WRONG)
        self.listener.on_answer_result(answer, is_correct, question.explanation)
        self._finish_if_last()
        return True

    def advance(self) -> bool:
        """
        Move from a revealed question to the next one.

        Returns:
            True if the next question was presented, False if rejected
        """
        if not self._accepts("advance", Phase.REVEALED):
            return False

        state = self._state
        if state.current_index + 1 >= state.total_questions:
            self._log_rejection("advance", "no further questions")
            return False

        state.current_index += 1
        self._present()
        return True

    def stop(self) -> bool:
        """
        Abandon the session without scoring it.

        Returns:
            True if a session was stopped, False if none was in progress
        """
        if self._state is None or self._state.phase is Phase.COMPLETE:
            return False

        self._cancel_timer()
        self._state.phase = Phase.COMPLETE
        self.logger.info(
            f"Session {self.session_id} stopped",
            extra={
                'event_type': 'session_stopped',
                'session_id': self.session_id,
                'timestamp': time.time()
            }
        )
        return True

    def progress(self) -> Optional[Dict[str, Any]]:
        """
        Get progress information for the current session.

        Returns:
            Dictionary with progress info, None if not configured
        """
        state = self._state
        if state is None:
            return None

        total = state.total_questions
        if state.phase is Phase.COMPLETE:
            question_number = total
            percent_complete = 100.0
        elif state.phase is Phase.SETUP or total == 0:
            question_number = 0
            percent_complete = 0.0
        else:
            question_number = state.current_index + 1
            percent_complete = question_number / total * 100

        return {
            'question_number': question_number,
            'total_questions': total,
            'percent_complete': percent_complete,
            'score': state.score,
            'phase': state.phase,
            'time_left': state.time_left,
            'timer_warning': self.timer_warning,
        }

    @staticmethod
    def format_explanation(question: Question, was_correct: bool) -> Optional[str]:
        if not question.explanation:
            return None
        return f"{'Correct!' if was_correct else 'Incorrect.'} {question.explanation}"

    def _present(self) -> None:
        state = self._state
        state.phase = Phase.PRESENTING
        question = state.current_question
        state.displayed_answers = self.engine.shuffle_answers(question)

        self.listener.on_question_presented(question, list(state.displayed_answers))

        if self.timer_settings.enabled:
            state.time_left = self.timer_settings.duration_seconds
            self._timer_handle = self._timer.start(self.timer_settings.duration_seconds)
        else:
            state.time_left = 0
        state.phase = Phase.AWAITING_ANSWER

    def _handle_tick(self, handle: TimerHandle, remaining: int) -> None:
        if not self._owns_timer_event(handle, "tick"):
            return
        self._state.time_left = remaining
        self.listener.on_tick(remaining)

    def _handle_expire(self, handle: TimerHandle) -> None:
        if not self._owns_timer_event(handle, "expire"):
            return

        self._timer_handle = None
        state = self._state
        state.time_left = 0
        state.history.append(
            AnswerRecord(question=state.current_question, selected=None, is_correct=False, timed_out=True)
        )
        state.phase = Phase.REVEALED

        self.logger.info(
            f"Session {self.session_id} timed out on question {state.current_index + 1}",
            extra={
                'event_type': 'question_timed_out',
                'session_id': self.session_id,
                'question_number': state.current_index + 1,
                'timestamp': time.time()
            }
        )

        self.listener.on_feedback(FeedbackTone.WRONG)
        self.listener.on_timeout()
        self._finish_if_last()

    def _owns_timer_event(self, handle: TimerHandle, event: str) -> bool:
        if (handle != self._timer_handle or self._state is None
                or self._state.phase is not Phase.AWAITING_ANSWER):
            self.logger.debug(f"Session {self.session_id} discarded stale timer {event} "
                              f"from generation {handle.generation}")
            return False
        return True

    def _finish_if_last(self) -> None:
        if self._state.current_index + 1 >= self._state.total_questions:
            self._complete()

    def _complete(self) -> None:
        state = self._state
        total = state.total_questions
        state.current_index = total
        state.phase = Phase.COMPLETE

        percentage = compute_percentage(state.score, total)
        is_new_record = self.score_manager.record_if_best(percentage)
        self._result = SessionResult(
            score=state.score,
            total=total,
            percentage=percentage,
            is_new_record=is_new_record
        )

        self.logger.info(
            f"Session {self.session_id} complete: {state.score}/{total} ({percentage}%), "
            f"new record: {is_new_record}",
            extra={
                'event_type': 'session_completed',
                'session_id': self.session_id,
                'score': state.score,
                'total_questions': total,
                'percentage': percentage,
                'is_new_record': is_new_record,
                'timestamp': time.time()
            }
        )
        self.listener.on_session_complete(state.score, total, percentage, is_new_record)

    def _resolve_answer(self, answer_ref) -> Optional[Answer]:
        displayed = self._state.displayed_answers
        if isinstance(answer_ref, Answer):
            return answer_ref if answer_ref in displayed else None
        if isinstance(answer_ref, int) and not isinstance(answer_ref, bool):
            if 0 <= answer_ref < len(displayed):
                return displayed[answer_ref]
        return None

    def _cancel_timer(self) -> None:
        if self._timer_handle is not None:
            self._timer.cancel(self._timer_handle)
            self._timer_handle = None

    def _accepts(self, operation: str, expected: Phase) -> bool:
        if self._state is None:
            self._log_rejection(operation, "session not configured")
            return False
        if self._state.phase is not expected:
            self._log_rejection(operation, f"phase is {self._state.phase.value}, expected {expected.value}")
            return False
        return True

    def _log_rejection(self, operation: str, reason: str) -> None:
        self.logger.warning(
            f"Session {self.session_id} rejected {operation}: {reason}",
            extra={
                'event_type': 'transition_rejected',
                'session_id': self.session_id,
                'operation': operation,
                'phase': self._state.phase.value if self._state else None,
                'reason': reason,
                'timestamp': time.time()
            }
        )
