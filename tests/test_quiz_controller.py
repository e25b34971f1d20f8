"""
Unit tests for QuizSession state management.
"""
import asyncio
import unittest
from unittest.mock import Mock

from devquiz.models import Answer, Difficulty, FeedbackTone, Phase
from devquiz.quiz_controller import QuizSession, SessionListener, compute_percentage
from devquiz.quiz_engine import TimerHandle
from devquiz.score_manager import HIGH_SCORE_KEY, MemoryStore
from tests.test_fixtures import RecordingListener, TestFixtures, async_test, wait_for


def correct_index(session: QuizSession) -> int:
    return next(i for i, answer in enumerate(session.displayed_answers) if answer.is_correct)


def wrong_index(session: QuizSession) -> int:
    return next(i for i, answer in enumerate(session.displayed_answers) if not answer.is_correct)


class TestComputePercentage(unittest.TestCase):
    """Test cases for score percentage rounding."""

    def test_exact_values(self):
        self.assertEqual(compute_percentage(1, 1), 100)
        self.assertEqual(compute_percentage(0, 1), 0)
        self.assertEqual(compute_percentage(7, 10), 70)

    def test_rounds_half_up(self):
        self.assertEqual(compute_percentage(1, 8), 13)   # 12.5
        self.assertEqual(compute_percentage(3, 8), 38)   # 37.5
        self.assertEqual(compute_percentage(2, 3), 67)
        self.assertEqual(compute_percentage(1, 3), 33)
        self.assertEqual(compute_percentage(6, 7), 86)

    def test_empty_session_is_zero(self):
        self.assertEqual(compute_percentage(0, 0), 0)


class TestQuizSessionFlow(unittest.TestCase):
    """Test cases for the session phase machine with the timer disabled."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = MemoryStore()
        self.listener = RecordingListener()
        self.questions = TestFixtures.create_sample_questions()
        self.session = TestFixtures.create_session(self.questions, self.store, self.listener)

    def test_initial_state(self):
        self.assertIsNone(self.session.state)
        self.assertIsNone(self.session.phase)
        self.assertIsNone(self.session.progress())
        self.assertEqual(self.session.history, [])

    def test_configure_enters_setup(self):
        self.session.configure("javascript", "beginner")
        state = self.session.state

        self.assertIs(self.session.phase, Phase.SETUP)
        self.assertEqual(state.category, "javascript")
        self.assertIs(state.difficulty, Difficulty.BEGINNER)
        self.assertEqual(state.score, 0)
        self.assertEqual(state.question_set, [])
        self.assertEqual(self.listener.calls, [])

    def test_start_presents_first_question(self):
        self.session.configure("javascript", "beginner")
        self.assertTrue(self.session.start())

        self.assertIs(self.session.phase, Phase.AWAITING_ANSWER)
        self.assertEqual(self.session.state.total_questions, 2)
        self.assertEqual(self.listener.names(), ["question_presented"])
        question, answers = self.listener.of("question_presented")[0]
        self.assertIs(question, self.session.state.current_question)
        self.assertEqual(answers, self.session.displayed_answers)
        self.assertEqual(sorted(a.text for a in answers), sorted(a.text for a in question.answers))

    def test_single_question_answered_correctly(self):
        """A single-question session answered correctly scores 1/1 at 100%."""
        self.session.configure("javascript", "advanced")
        self.session.start()
        self.assertTrue(self.session.submit_answer(correct_index(self.session)))

        self.assertIs(self.session.phase, Phase.COMPLETE)
        self.assertEqual(self.listener.of("session_complete"), [(1, 1, 100, True)])
        self.assertEqual(self.session.result.percentage, 100)
        self.assertEqual(self.store.get(HIGH_SCORE_KEY), 100)

    def test_answer_hooks_order(self):
        self.session.configure("javascript", "advanced")
        self.session.start()
        self.session.submit_answer(wrong_index(self.session))

        self.assertEqual(
            self.listener.names(),
            ["question_presented", "feedback", "answer_result", "session_complete"]
        )
        self.assertEqual(self.listener.of("feedback"), [(FeedbackTone.WRONG,)])
        selected, is_correct, explanation = self.listener.of("answer_result")[0]
        self.assertFalse(selected.is_correct)
        self.assertFalse(is_correct)
        self.assertEqual(explanation, "Basic arithmetic.")
        self.assertEqual(self.listener.of("session_complete"), [(0, 1, 0, False)])

    def test_submit_with_answer_object(self):
        self.session.configure("javascript", "advanced")
        self.session.start()
        answer = self.session.displayed_answers[correct_index(self.session)]
        self.assertTrue(self.session.submit_answer(answer))
        self.assertEqual(self.session.state.score, 1)

    def test_submit_unknown_answer_rejected(self):
        self.session.configure("javascript", "advanced")
        self.session.start()
        for bad_ref in (-1, 4, True, "Right", None, Answer("Other")):
            with self.subTest(ref=bad_ref):
                self.assertFalse(self.session.submit_answer(bad_ref))
        self.assertIs(self.session.phase, Phase.AWAITING_ANSWER)
        self.assertEqual(self.session.history, [])

    def test_full_session_with_advance(self):
        self.session.configure("javascript", "beginner")
        self.session.start()

        self.session.submit_answer(correct_index(self.session))
        self.assertIs(self.session.phase, Phase.REVEALED)
        self.assertEqual(self.listener.of("feedback"), [(FeedbackTone.CORRECT,)])

        self.assertTrue(self.session.advance())
        self.assertIs(self.session.phase, Phase.AWAITING_ANSWER)
        self.assertEqual(self.session.state.current_index, 1)

        self.session.submit_answer(wrong_index(self.session))
        self.assertIs(self.session.phase, Phase.COMPLETE)
        self.assertEqual(self.listener.of("session_complete"), [(1, 2, 50, True)])
        self.assertEqual([record.is_correct for record in self.session.history], [True, False])
        self.assertEqual(self.session.state.current_index, self.session.state.total_questions)

    def test_empty_selection_completes_immediately(self):
        self.session.configure("css", "advanced")
        self.assertTrue(self.session.start())

        self.assertIs(self.session.phase, Phase.COMPLETE)
        self.assertEqual(self.listener.names(), ["session_complete"])
        self.assertEqual(self.listener.of("session_complete"), [(0, 0, 0, False)])
        self.assertIsNone(self.store.get(HIGH_SCORE_KEY))

    def test_unknown_difficulty_completes_immediately(self):
        self.session.configure("javascript", "expert")
        self.assertIsNone(self.session.state.difficulty)
        self.session.start()
        self.assertEqual(self.listener.of("session_complete"), [(0, 0, 0, False)])

    def test_double_submit_has_no_effect(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        index = correct_index(self.session)

        self.assertTrue(self.session.submit_answer(index))
        self.assertFalse(self.session.submit_answer(index))

        self.assertEqual(self.session.state.score, 1)
        self.assertEqual(len(self.session.history), 1)
        self.assertEqual(len(self.listener.of("answer_result")), 1)

    def test_out_of_order_calls_rejected(self):
        # Nothing configured yet
        self.assertFalse(self.session.start())
        self.assertFalse(self.session.submit_answer(0))
        self.assertFalse(self.session.advance())

        self.session.configure("javascript", "beginner")
        self.assertFalse(self.session.submit_answer(0))
        self.assertFalse(self.session.advance())

        self.session.start()
        self.assertFalse(self.session.start())
        with self.assertLogs('devquiz.quiz_controller', level='WARNING') as captured:
            self.assertFalse(self.session.advance())
        self.assertEqual(captured.records[0].event_type, 'transition_rejected')
        self.assertIs(self.session.phase, Phase.AWAITING_ANSWER)
        self.assertEqual(self.listener.names(), ["question_presented"])

    def test_advance_after_last_question_rejected(self):
        self.session.configure("javascript", "advanced")
        self.session.start()
        self.session.submit_answer(0)
        self.assertFalse(self.session.advance())
        self.assertFalse(self.session.submit_answer(0))
        self.assertEqual(len(self.listener.of("session_complete")), 1)

    def test_configure_discards_previous_session(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        self.session.submit_answer(correct_index(self.session))

        self.session.configure("css", "beginner")
        self.assertIs(self.session.phase, Phase.SETUP)
        self.assertEqual(self.session.state.score, 0)
        self.assertEqual(self.session.history, [])
        self.assertIsNone(self.session.result)

    def test_best_score_loaded_at_start(self):
        self.store.set(HIGH_SCORE_KEY, 70)
        self.session.configure("javascript", "beginner")
        self.assertIsNone(self.session.state.best_score)
        self.session.start()
        self.assertEqual(self.session.state.best_score, 70)

    def test_stop(self):
        self.assertFalse(self.session.stop())
        self.session.configure("javascript", "beginner")
        self.session.start()

        self.assertTrue(self.session.stop())
        self.assertIs(self.session.phase, Phase.COMPLETE)
        self.assertIsNone(self.session.result)
        self.assertFalse(self.session.stop())
        self.assertFalse(self.session.submit_answer(0))
        self.assertNotIn("session_complete", self.listener.names())
        self.assertIsNone(self.store.get(HIGH_SCORE_KEY))

    def test_progress(self):
        self.session.configure("javascript", "beginner")
        progress = self.session.progress()
        self.assertEqual(progress['question_number'], 0)
        self.assertEqual(progress['percent_complete'], 0.0)

        self.session.start()
        progress = self.session.progress()
        self.assertEqual(progress['question_number'], 1)
        self.assertEqual(progress['total_questions'], 2)
        self.assertEqual(progress['percent_complete'], 50.0)
        self.assertIs(progress['phase'], Phase.AWAITING_ANSWER)
        self.assertFalse(progress['timer_warning'])

        self.session.submit_answer(0)
        self.session.advance()
        self.session.submit_answer(0)
        progress = self.session.progress()
        self.assertEqual(progress['question_number'], 2)
        self.assertEqual(progress['percent_complete'], 100.0)

    def test_timer_disabled_never_ticks(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        self.assertEqual(self.session.state.time_left, 0)
        self.assertFalse(self.session.timer_warning)
        self.assertNotIn("tick", self.listener.names())

    def test_format_explanation(self):
        question = TestFixtures.make_question(explanation="Because.")
        self.assertEqual(QuizSession.format_explanation(question, True), "Correct! Because.")
        self.assertEqual(QuizSession.format_explanation(question, False), "Incorrect. Because.")
        self.assertIsNone(QuizSession.format_explanation(TestFixtures.make_question(explanation=None), True))

    def test_default_listener_is_noop(self):
        session = TestFixtures.create_session(self.questions)
        self.assertIsInstance(session.listener, SessionListener)
        session.configure("javascript", "advanced")
        session.start()
        self.assertTrue(session.submit_answer(0))


class TestQuizSessionHighScore(unittest.TestCase):
    """Test cases for best-score tracking at session completion."""

    def run_session(self, store, correct, total, difficulty=Difficulty.BEGINNER):
        questions = TestFixtures.create_many_questions(total, difficulty=difficulty)
        listener = RecordingListener()
        session = TestFixtures.create_session(questions, store, listener)
        session.configure("javascript", difficulty)
        session.start()
        for i in range(total):
            session.submit_answer(correct_index(session) if i < correct else wrong_index(session))
            if i + 1 < total:
                session.advance()
        return listener.of("session_complete")[0]

    def test_lower_score_does_not_replace_best(self):
        store = MemoryStore({HIGH_SCORE_KEY: 70})
        self.assertEqual(self.run_session(store, 6, 10), (6, 10, 60, False))
        self.assertEqual(store.get(HIGH_SCORE_KEY), 70)

    def test_equal_score_does_not_replace_best(self):
        store = MemoryStore({HIGH_SCORE_KEY: 70})
        self.assertEqual(self.run_session(store, 7, 10), (7, 10, 70, False))

    def test_higher_score_replaces_best(self):
        store = MemoryStore({HIGH_SCORE_KEY: 70})
        self.assertEqual(self.run_session(store, 6, 7, Difficulty.INTERMEDIATE), (6, 7, 86, True))
        self.assertEqual(store.get(HIGH_SCORE_KEY), 86)

    def test_unavailable_store_degrades_to_no_record(self):
        store = MemoryStore()
        store.available = False
        self.assertEqual(self.run_session(store, 5, 5, Difficulty.ADVANCED), (5, 5, 100, False))

    def test_celebration(self):
        questions = TestFixtures.create_many_questions(5, difficulty=Difficulty.ADVANCED)
        session = TestFixtures.create_session(questions, MemoryStore({HIGH_SCORE_KEY: 100}))
        session.configure("javascript", "advanced")
        session.start()
        for i in range(5):
            session.submit_answer(correct_index(session) if i < 4 else wrong_index(session))
            if i < 4:
                session.advance()
        self.assertEqual(session.result.percentage, 80)
        self.assertFalse(session.result.is_new_record)
        self.assertTrue(session.result.should_celebrate)
        self.assertEqual(session.result.summary(), "Quiz Complete! Your score: 4/5 (80%)")


class TestQuizSessionTimer(unittest.TestCase):
    """Test cases for countdown-driven transitions."""

    def setUp(self):
        self.store = MemoryStore()
        self.listener = RecordingListener()
        self.session = TestFixtures.create_session(
            TestFixtures.create_sample_questions(), self.store, self.listener, timer_enabled=True
        )

    async def test_timeout_on_single_question(self):
        """An unanswered single question times out and scores 0/1 at 0%."""
        self.session.configure("javascript", "advanced")
        self.session.start()
        self.assertEqual(self.session.state.time_left, 15)

        self.assertTrue(await wait_for(lambda: "session_complete" in self.listener.names()))

        ticks = [args[0] for args in self.listener.of("tick")]
        self.assertEqual(ticks, list(range(14, -1, -1)))
        self.assertEqual(self.listener.names()[-3:], ["feedback", "timeout", "session_complete"])
        self.assertEqual(self.listener.of("feedback"), [(FeedbackTone.WRONG,)])
        self.assertEqual(self.listener.of("session_complete"), [(0, 1, 0, False)])
        self.assertTrue(self.session.history[0].timed_out)
        self.assertIsNone(self.session.history[0].selected)
        self.assertFalse(self.session.submit_answer(0))

    async def test_timeout_then_advance(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        self.assertTrue(await wait_for(lambda: "timeout" in self.listener.names()))

        self.assertIs(self.session.phase, Phase.REVEALED)
        self.assertTrue(self.session.advance())
        self.assertEqual(self.session.state.time_left, 15)
        self.session.submit_answer(correct_index(self.session))
        self.assertEqual(self.listener.of("session_complete"), [(1, 2, 50, True)])

    async def test_answer_cancels_countdown(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        self.session.submit_answer(correct_index(self.session))
        await asyncio.sleep(0.05)

        self.assertNotIn("tick", self.listener.names())
        self.assertNotIn("timeout", self.listener.names())
        self.assertIs(self.session.phase, Phase.REVEALED)

    async def test_stale_timer_events_discarded(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        old_handle = self.session._timer_handle
        self.session.submit_answer(correct_index(self.session))
        self.session.advance()
        calls_before = list(self.listener.calls)

        self.session._handle_tick(old_handle, 3)
        self.session._handle_expire(old_handle)
        self.session._handle_expire(TimerHandle(999, 15))

        self.assertEqual(self.listener.calls, calls_before)
        self.assertIs(self.session.phase, Phase.AWAITING_ANSWER)
        self.assertEqual(self.session.history[-1].is_correct, True)
        self.assertEqual(len(self.session.history), 1)
        self.session.stop()
        await asyncio.sleep(0.01)

    async def test_timer_warning_threshold(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        self.assertFalse(self.session.timer_warning)
        handle = self.session._timer_handle

        self.session._handle_tick(handle, 6)
        self.assertFalse(self.session.timer_warning)
        self.session._handle_tick(handle, 5)
        self.assertTrue(self.session.timer_warning)
        self.assertTrue(self.session.progress()['timer_warning'])
        self.session.stop()
        await asyncio.sleep(0.01)

    async def test_stop_cancels_countdown(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        self.session.stop()
        await asyncio.sleep(0.05)
        self.assertNotIn("tick", self.listener.names())
        self.assertNotIn("timeout", self.listener.names())

    async def test_reconfigure_cancels_countdown(self):
        self.session.configure("javascript", "beginner")
        self.session.start()
        self.session.configure("css", "beginner")
        await asyncio.sleep(0.05)
        self.assertNotIn("tick", self.listener.names())
        self.assertIs(self.session.phase, Phase.SETUP)

    async def test_mock_listener_receives_hooks(self):
        """Any SessionListener implementation receives the completion hook once."""
        listener = Mock(spec=SessionListener)
        session = TestFixtures.create_session(
            TestFixtures.create_sample_questions(), MemoryStore(), listener, timer_enabled=True
        )
        session.configure("javascript", "advanced")
        session.start()
        self.assertTrue(session.submit_answer(0))
        await asyncio.sleep(0.05)
        listener.on_timeout.assert_not_called()
        listener.on_session_complete.assert_called_once()


# Apply async_test decorator to async test methods
TestQuizSessionTimer.test_timeout_on_single_question = async_test(TestQuizSessionTimer.test_timeout_on_single_question)
TestQuizSessionTimer.test_timeout_then_advance = async_test(TestQuizSessionTimer.test_timeout_then_advance)
TestQuizSessionTimer.test_answer_cancels_countdown = async_test(TestQuizSessionTimer.test_answer_cancels_countdown)
TestQuizSessionTimer.test_stale_timer_events_discarded = async_test(TestQuizSessionTimer.test_stale_timer_events_discarded)
TestQuizSessionTimer.test_timer_warning_threshold = async_test(TestQuizSessionTimer.test_timer_warning_threshold)
TestQuizSessionTimer.test_stop_cancels_countdown = async_test(TestQuizSessionTimer.test_stop_cancels_countdown)
TestQuizSessionTimer.test_reconfigure_cancels_countdown = async_test(TestQuizSessionTimer.test_reconfigure_cancels_countdown)
TestQuizSessionTimer.test_mock_listener_receives_hooks = async_test(TestQuizSessionTimer.test_mock_listener_receives_hooks)


if __name__ == '__main__':
    unittest.main()
