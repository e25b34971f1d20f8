"""
Quiz engine core logic for devquiz.
Handles question drawing, answer shuffling and the per-question countdown.
"""
import random
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, TypeVar

from .models import Answer, Question
from .question_bank import QuestionRepository

# Set up logger for timer operations
logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_created(session_id: str, generation: int, duration: int) -> None:
        logger.info(
            f"Timer lifecycle: CREATED - Session {session_id}, Generation {generation}, Duration {duration}s",
            extra={
                'event_type': 'timer_created',
                'session_id': session_id,
                'generation': generation,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_start(session_id: str, generation: int) -> None:
        logger.debug(
            f"Timer lifecycle: COUNTDOWN_START - Session {session_id}, Generation {generation}",
            extra={
                'event_type': 'timer_countdown_start',
                'session_id': session_id,
                'generation': generation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(session_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Timer lifecycle: UPDATE - Session {session_id}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'session_id': session_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(session_id: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Session {session_id}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'session_id': session_id,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_id: str, error_type: str, error_message: str, operation: str) -> None:
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_id': session_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(session_id: str, details: str) -> None:
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Session {session_id}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'session_id': session_id,
                'details': details,
                'timestamp': time.time()
            }
        )


@dataclass(frozen=True)
class TimerHandle:
    """Identity of one started countdown."""
    generation: int
    duration: int


class QuizTimer:
    """
    Cancelable per-question countdown.

    At most one countdown is active at a time. Starting a new countdown
    invalidates the previous handle, and tick or expire events whose handle
    is no longer the active one are discarded.
    """

    def __init__(
        self,
        on_tick: Callable[[TimerHandle, int], None],
        on_expire: Callable[[TimerHandle], None],
        session_id: str = None,
        tick_interval: float = 1.0
    ):
        """
        Initialize the timer.

        Args:
            on_tick: Called after every elapsed second with the remaining seconds
            on_expire: Called once when the remaining time reaches zero
            session_id: Identifier used in log records
            tick_interval: Real seconds per counted second
        """
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._session_id = session_id
        self._tick_interval = tick_interval
        self._generation = 0
        self._active: Optional[TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0

    def start(self, duration: int) -> TimerHandle:
        """
        Start a countdown, superseding any active one.

        Must be called from within a running event loop.

        Returns:
            Handle identifying the new countdown
        """
        if self._active is not None:
            TimerLifecycleLogger.log_race_condition_detected(
                self._session_id,
                f"Generation {self._active.generation} superseded before completion"
            )
            self.cancel()

        self._generation += 1
        handle = TimerHandle(self._generation, duration)
        self._active = handle
        self._remaining_time = duration

        TimerLifecycleLogger.log_timer_created(self._session_id, handle.generation, duration)
        self._task = asyncio.get_running_loop().create_task(self._countdown(handle))
        return handle

    def cancel(self, handle: Optional[TimerHandle] = None) -> bool:
        """
        Cancel the active countdown.

        Idempotent: cancelling twice, cancelling after expiry, or cancelling
        with a superseded handle does nothing.

        Args:
            handle: Only cancel if this is still the active countdown; None
                cancels whatever is active

        Returns:
            True if a countdown was cancelled, False otherwise
        """
        if self._active is None or (handle is not None and handle != self._active):
            logger.debug(f"No matching active countdown to cancel for session {self._session_id}")
            return False

        cancelled = self._active
        self._active = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

        TimerLifecycleLogger.log_timer_completion(self._session_id, "cancelled", cancelled.duration)
        return True

    def is_current(self, handle: Optional[TimerHandle]) -> bool:
        return handle is not None and handle == self._active

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def remaining_time(self) -> int:
        return self._remaining_time

    async def _countdown(self, handle: TimerHandle) -> None:
        TimerLifecycleLogger.log_timer_start(self._session_id, handle.generation)
        remaining = handle.duration

        try:
            while remaining > 0:
                await asyncio.sleep(self._tick_interval)
                if not self.is_current(handle):
                    TimerLifecycleLogger.log_race_condition_detected(
                        self._session_id,
                        f"Discarded tick from stale generation {handle.generation}"
                    )
                    return

                remaining -= 1
                self._remaining_time = remaining
                TimerLifecycleLogger.log_timer_update(self._session_id, remaining, handle.duration)
                self._on_tick(handle, remaining)

            if not self.is_current(handle):
                TimerLifecycleLogger.log_race_condition_detected(
                    self._session_id,
                    f"Discarded expiry from stale generation {handle.generation}"
                )
                return

            self._active = None
            self._task = None
            TimerLifecycleLogger.log_timer_completion(self._session_id, "natural_expiry", handle.duration)
            self._on_expire(handle)

        except asyncio.CancelledError:
            logger.debug(f"Countdown task cancelled for session {self._session_id}, generation {handle.generation}")
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._session_id,
                "countdown_execution_error",
                str(e),
                "_countdown"
            )
            raise


class Shuffler:
    """Uniform random permutations (Fisher-Yates) over an injectable random source."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def shuffle(self, sequence: Sequence[T]) -> List[T]:
        """
        Return a new list with the elements of sequence in random order.

        Every permutation is equally likely given a uniform random source.
        The input is never modified.
        """
        items = list(sequence)
        for i in range(len(items) - 1, 0, -1):
            j = self._rng.randint(0, i)
            items[i], items[j] = items[j], items[i]
        return items


class QuizEngine:
    """Draws the question sequence of a session and orders each question's answers."""

    def __init__(self, repository: QuestionRepository, shuffler: Optional[Shuffler] = None):
        self.repository = repository
        self.shuffler = shuffler or Shuffler()

    def draw_questions(self, category: str, difficulty) -> List[Question]:
        """Select the capped questions for a category/difficulty and shuffle their order."""
        return self.shuffler.shuffle(self.repository.select_questions(category, difficulty))

    def shuffle_answers(self, question: Question) -> List[Answer]:
        return self.shuffler.shuffle(question.answers)
