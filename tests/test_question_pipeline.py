"""
Tests for the retry helper, the question generator and the quality gate.
"""
import unittest
from unittest.mock import AsyncMock

from errors import GenerationError, MaxRetriesExceeded, ProviderError
from models import TriviaQuestion
from question_pipeline import (
    GENERATOR_SYSTEM_PROMPTS,
    QualityGate, QuestionGenerator, QuestionPipeline,
    retry_with_fixed_delay,
)
from stub_llm import RecordingSleep, ScriptedLLM, evaluation_json, question_json, question_payload


class TestRetryWithFixedDelay(unittest.IsolatedAsyncioTestCase):

    async def test_always_failing_operation_is_tried_three_times(self):
        sleep = RecordingSleep()
        operation = AsyncMock(side_effect=ProviderError("down"))

        with self.assertRaises(MaxRetriesExceeded) as ctx:
            await retry_with_fixed_delay(operation, sleep=sleep, description="test")

        self.assertEqual(operation.await_count, 3)
        self.assertEqual(sleep.delays, [1.0, 1.0])
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIsInstance(ctx.exception.last_error, ProviderError)
        self.assertIsInstance(ctx.exception.__cause__, ProviderError)

    async def test_success_on_first_try_does_not_sleep(self):
        sleep = RecordingSleep()
        operation = AsyncMock(return_value="ok")
        self.assertEqual(await retry_with_fixed_delay(operation, sleep=sleep), "ok")
        self.assertEqual(operation.await_count, 1)
        self.assertEqual(sleep.delays, [])

    async def test_recovers_on_last_attempt(self):
        sleep = RecordingSleep()
        operation = AsyncMock(side_effect=[ValueError("bad"), ConnectionError("reset"), "ok"])
        self.assertEqual(await retry_with_fixed_delay(operation, sleep=sleep), "ok")
        self.assertEqual(operation.await_count, 3)
        self.assertEqual(sleep.delays, [1.0, 1.0])


class TestQuestionGenerator(unittest.IsolatedAsyncioTestCase):

    def make_generator(self, llm):
        self.sleep = RecordingSleep()
        return QuestionGenerator(llm, sleep=self.sleep)

    async def test_astronomy_question(self):
        llm = ScriptedLLM(generate_question=[question_json()])
        question = await self.make_generator(llm).generate("astronomy", [], "en")

        self.assertTrue(question.question)
        self.assertEqual(len(question.options), 4)
        self.assertEqual(len(set(question.options)), 4)
        self.assertTrue(0 <= question.correctAnswer < 4)

    async def test_prompt_includes_topic_and_previous_questions(self):
        llm = ScriptedLLM(generate_question=[question_json()])
        previous = ["What is the largest moon of Jupiter?", "Which star is closest to Earth?"]
        await self.make_generator(llm).generate("astronomy", previous, "en")

        call = llm.calls[0]
        self.assertIn("astronomy", call["prompt"])
        for text in previous:
            self.assertIn(text, call["prompt"])
        self.assertIn("correctAnswer", call["prompt"])
        self.assertEqual(call["system_message"], GENERATOR_SYSTEM_PROMPTS["en"])

    async def test_spanish_system_prompt(self):
        llm = ScriptedLLM(generate_question=[question_json()])
        await self.make_generator(llm).generate("astronomía", [], "es")
        self.assertEqual(llm.calls[0]["system_message"], GENERATOR_SYSTEM_PROMPTS["es"])
        self.assertIn("Spanish", llm.calls[0]["prompt"])

    async def test_accepts_fenced_reply(self):
        llm = ScriptedLLM(generate_question=[f"Here you go:\n```json\n{question_json()}\n```"])
        question = await self.make_generator(llm).generate("astronomy")
        self.assertEqual(question.correctAnswer, 2)

    async def test_fails_twice_then_succeeds(self):
        llm = ScriptedLLM(generate_question=[
            ProviderError("timeout"),
            "not json at all",
            question_json(),
        ])
        question = await self.make_generator(llm).generate("astronomy")
        self.assertEqual(question.question, question_payload()["question"])
        self.assertEqual(llm.count("generate_question"), 3)
        self.assertEqual(self.sleep.delays, [1.0, 1.0])

    async def test_schema_violation_is_retried(self):
        llm = ScriptedLLM(generate_question=[
            question_json(options=["A", "B", "C"]),
            question_json(),
        ])
        await self.make_generator(llm).generate("astronomy")
        self.assertEqual(llm.count("generate_question"), 2)

    async def test_fails_on_all_three_attempts(self):
        llm = ScriptedLLM(generate_question=[ProviderError("down")])
        with self.assertRaises(GenerationError):
            await self.make_generator(llm).generate("astronomy")
        self.assertEqual(llm.count("generate_question"), 3)

    async def test_empty_topic_rejected_without_calling_model(self):
        llm = ScriptedLLM()
        with self.assertRaises(GenerationError):
            await self.make_generator(llm).generate("   ")
        self.assertEqual(llm.calls, [])


class TestQualityGate(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.question = TriviaQuestion(**question_payload())
        self.revised_json = question_json(question="Which planet has a hexagon-shaped storm?")

    async def test_pass_on_first_cycle_returns_original(self):
        llm = ScriptedLLM(evaluate_question=[evaluation_json("pass")])
        outcome = await QualityGate(llm).review(self.question, [], "en")

        self.assertIs(outcome.question, self.question)
        self.assertEqual(outcome.verdict, "accepted")
        self.assertEqual(outcome.cycles, 0)
        self.assertEqual(llm.count("optimize_question"), 0)

    async def test_fail_then_pass_returns_revision(self):
        llm = ScriptedLLM(
            evaluate_question=[evaluation_json("fail", 4), evaluation_json("pass")],
            optimize_question=[self.revised_json],
        )
        outcome = await QualityGate(llm).review(self.question, [], "en")

        self.assertEqual(outcome.verdict, "accepted")
        self.assertEqual(outcome.cycles, 1)
        self.assertEqual(outcome.question.question, "Which planet has a hexagon-shaped storm?")

    async def test_never_more_than_two_optimize_cycles(self):
        llm = ScriptedLLM(
            evaluate_question=[evaluation_json("fail", 3)],
            optimize_question=[self.revised_json],
        )
        outcome = await QualityGate(llm).review(self.question, [], "en")

        self.assertEqual(outcome.verdict, "unverified")
        self.assertEqual(outcome.cycles, 2)
        self.assertEqual(llm.count("optimize_question"), 2)
        self.assertEqual(llm.count("evaluate_question"), 3)
        self.assertEqual(outcome.question.question, "Which planet has a hexagon-shaped storm?")

    async def test_unparseable_evaluation_returns_current_question(self):
        llm = ScriptedLLM(evaluate_question=["I think it's fine"])
        outcome = await QualityGate(llm).review(self.question, [], "en")
        self.assertIs(outcome.question, self.question)
        self.assertEqual(outcome.verdict, "unverified")

    async def test_unparseable_optimization_returns_last_good_question(self):
        llm = ScriptedLLM(
            evaluate_question=[evaluation_json("fail", 4), evaluation_json("fail", 4)],
            optimize_question=[self.revised_json, '{"question": "broken"}'],
        )
        outcome = await QualityGate(llm).review(self.question, [], "en")

        self.assertEqual(outcome.verdict, "unverified")
        self.assertEqual(outcome.cycles, 1)
        self.assertEqual(outcome.question.question, "Which planet has a hexagon-shaped storm?")

    async def test_provider_failure_during_evaluation_is_not_fatal(self):
        llm = ScriptedLLM(evaluate_question=[ProviderError("down")])
        outcome = await QualityGate(llm).review(self.question, [], "en")
        self.assertIs(outcome.question, self.question)

    async def test_optimizer_prompt_names_weak_criteria(self):
        llm = ScriptedLLM(
            evaluate_question=[evaluation_json("fail", 8, uniqueness=3), evaluation_json("pass")],
            optimize_question=[self.revised_json],
        )
        await QualityGate(llm).review(self.question, ["Which planet has the most moons?"], "es")
        prompt = next(c["prompt"] for c in llm.calls if c["caller"] == "optimize_question")
        self.assertIn("Revise only: uniqueness", prompt)
        self.assertIn("Spanish", prompt)


class TestQuestionPipeline(unittest.IsolatedAsyncioTestCase):

    async def test_without_gate(self):
        llm = ScriptedLLM(generate_question=[question_json()])
        pipeline = QuestionPipeline(QuestionGenerator(llm, sleep=RecordingSleep()))
        question = await pipeline.next_question("astronomy", [], "en")
        self.assertEqual(question.correctAnswer, 2)
        self.assertEqual(llm.count("evaluate_question"), 0)

    async def test_with_gate(self):
        llm = ScriptedLLM(
            generate_question=[question_json()],
            evaluate_question=[evaluation_json("fail", 4), evaluation_json("pass")],
            optimize_question=[question_json(question="Revised?")],
        )
        pipeline = QuestionPipeline(QuestionGenerator(llm, sleep=RecordingSleep()), QualityGate(llm))
        question = await pipeline.next_question("astronomy", [], "en")
        self.assertEqual(question.question, "Revised?")
        self.assertEqual(
            [c["caller"] for c in llm.calls],
            ["generate_question", "evaluate_question", "optimize_question", "evaluate_question"],
        )


if __name__ == "__main__":
    unittest.main()
