"""
Unit tests for the data contracts and the session rules.
"""
import unittest

from pydantic import ValidationError

from errors import NoHintsRemaining, SessionError
from models import (
    DEFAULT_HINTS, REQUIRED_SCORE, TOTAL_QUESTIONS,
    EvaluationResult, GameConfig, TriviaQuestion, TriviaSession,
)
from stub_llm import question_json, question_payload


def make_question(**overrides) -> TriviaQuestion:
    return TriviaQuestion(**question_payload(**overrides))


class TestTriviaQuestion(unittest.TestCase):

    def test_valid_question(self):
        q = make_question()
        self.assertEqual(len(q.options), 4)
        self.assertEqual(q.correctAnswer, 2)

    def test_requires_exactly_four_options(self):
        with self.assertRaises(ValidationError):
            make_question(options=["A", "B", "C"])
        with self.assertRaises(ValidationError):
            make_question(options=["A", "B", "C", "D", "E"])

    def test_correct_answer_must_index_options(self):
        with self.assertRaises(ValidationError):
            make_question(correctAnswer=4)
        with self.assertRaises(ValidationError):
            make_question(correctAnswer=-1)

    def test_options_must_be_distinct(self):
        with self.assertRaises(ValidationError):
            make_question(options=["Mars", "mars ", "Venus", "Earth"])

    def test_blank_question_rejected(self):
        with self.assertRaises(ValidationError):
            make_question(question="   ")

    def test_blank_hint_and_explanation_rejected(self):
        for field_name in ("hint", "explanation"):
            for value in ("", "   "):
                with self.assertRaises(ValidationError):
                    make_question(**{field_name: value})

    def test_correct_answer_is_not_coerced(self):
        for value in (True, "2", 2.0):
            with self.assertRaises(ValidationError):
                make_question(correctAnswer=value)

    def test_correct_answer_from_json_reply(self):
        q = TriviaQuestion.model_validate_json(question_json())
        self.assertEqual(q.correctAnswer, 2)
        with self.assertRaises(ValidationError):
            TriviaQuestion.model_validate_json(question_json(correctAnswer="2"))

    def test_missing_hint_rejected(self):
        data = question_payload()
        del data["hint"]
        with self.assertRaises(ValidationError):
            TriviaQuestion(**data)


class TestEvaluationResult(unittest.TestCase):

    def test_scores_are_bounded(self):
        with self.assertRaises(ValidationError):
            EvaluationResult(
                clarity=11, difficulty=5, uniqueness=5,
                explanationQuality=5, hintQuality=5, overallVerdict="pass",
            )

    def test_verdict_is_trusted_over_scores(self):
        result = EvaluationResult(
            clarity=2, difficulty=2, uniqueness=2,
            explanationQuality=2, hintQuality=2, overallVerdict="pass",
        )
        self.assertTrue(result.passed)

    def test_weakest_criteria_lowest_first(self):
        result = EvaluationResult(
            clarity=9, difficulty=6, uniqueness=3,
            explanationQuality=8, hintQuality=5, overallVerdict="fail",
        )
        self.assertEqual(result.weakest_criteria(), ["uniqueness", "hintQuality", "difficulty"])


class TestGameConstants(unittest.TestCase):

    def test_constants(self):
        self.assertEqual(TOTAL_QUESTIONS, 15)
        self.assertEqual(REQUIRED_SCORE, 14)
        self.assertEqual(DEFAULT_HINTS, 3)
        config = GameConfig()
        self.assertEqual(config.requiredScore, REQUIRED_SCORE)


class TestTriviaSession(unittest.TestCase):

    def setUp(self):
        self.session = TriviaSession(topic="astronomy")

    def test_present_records_history(self):
        q = make_question()
        self.session.present(q)
        self.assertIs(self.session.current_question, q)
        self.assertEqual(self.session.previous_questions, [q.question])

    def test_present_twice_without_answer_fails(self):
        self.session.present(make_question())
        with self.assertRaises(SessionError):
            self.session.present(make_question(question="Another?"))

    def test_correct_answer_scores(self):
        self.session.present(make_question())
        outcome = self.session.answer(2)
        self.assertTrue(outcome.correct)
        self.assertEqual(self.session.score, 1)
        self.assertEqual(self.session.current_question_index, 1)
        self.assertIsNone(self.session.current_question)

    def test_wrong_answer_does_not_score(self):
        self.session.present(make_question())
        outcome = self.session.answer(0)
        self.assertFalse(outcome.correct)
        self.assertEqual(outcome.correctAnswer, 2)
        self.assertEqual(self.session.score, 0)
        self.assertEqual(self.session.mistakes, 1)

    def test_answer_out_of_range(self):
        self.session.present(make_question())
        with self.assertRaises(SessionError):
            self.session.answer(4)

    def test_answer_without_question(self):
        with self.assertRaises(SessionError):
            self.session.answer(0)

    def test_hints_decrease_and_run_out(self):
        for i in range(DEFAULT_HINTS):
            self.session.present(make_question(question=f"Q{i}?"))
            self.assertEqual(self.session.use_hint(), "It is famous for its rings.")
            self.session.answer(2)
        self.assertEqual(self.session.hints_remaining, 0)
        self.session.present(make_question(question="Last?"))
        with self.assertRaises(NoHintsRemaining):
            self.session.use_hint()
        self.assertEqual(self.session.hints_remaining, 0)

    def test_hint_for_same_question_charged_once(self):
        self.session.present(make_question())
        self.session.use_hint()
        self.session.use_hint()
        self.assertEqual(self.session.hints_remaining, DEFAULT_HINTS - 1)

    def test_hint_without_question(self):
        with self.assertRaises(SessionError):
            self.session.use_hint()

    def test_loses_when_required_score_unreachable(self):
        allowed = TOTAL_QUESTIONS - REQUIRED_SCORE
        for i in range(allowed + 1):
            self.assertEqual(self.session.status, "playing")
            self.session.present(make_question(question=f"Q{i}?"))
            self.session.answer(0)
        self.assertEqual(self.session.status, "lost")
        with self.assertRaises(SessionError):
            self.session.present(make_question(question="More?"))

    def test_wins_after_all_questions(self):
        session = TriviaSession(topic="astronomy", total_questions=3, required_score=2)
        for i, choice in enumerate([2, 0, 2]):
            session.present(make_question(question=f"Q{i}?"))
            session.answer(choice)
        self.assertEqual(session.score, 2)
        self.assertEqual(session.status, "won")
        self.assertTrue(session.is_finished)


if __name__ == "__main__":
    unittest.main()
