"""Question pipeline: generate with bounded retry, then an optional quality gate.

Each call is independent and strictly sequential: the generator's result
feeds the evaluator, whose scores feed the optimizer. No state is kept
between calls; the language-model client is passed in by the caller.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from errors import GenerationError, MaxRetriesExceeded
from llm_client import LanguageModel, parse_structured, schema_instructions
from logger import get_logger, log_pipeline_event
from models import EvaluationResult, Language, TriviaQuestion

logger = get_logger("TriviaWars.pipeline")

T = TypeVar("T")

GENERATION_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 1.0
MAX_OPTIMIZE_CYCLES = 2


async def retry_with_fixed_delay(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = GENERATION_ATTEMPTS,
    delay: float = RETRY_DELAY_SECONDS,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``operation`` up to ``attempts`` times with a fixed pause between tries.

    Any exception counts as a failed attempt. When every attempt fails,
    ``MaxRetriesExceeded`` is raised from the last error.
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if attempt < attempts:
                logger.warning(
                    f"⚠️  {description}: attempt {attempt}/{attempts} failed ({e}); "
                    f"retrying in {delay:.1f}s"
                )
                await sleep(delay)
    logger.error(f"❌ {description}: all {attempts} attempts failed. Last error: {last_error}")
    raise MaxRetriesExceeded(description, attempts, last_error) from last_error


# --- Prompts ---

GENERATOR_SYSTEM_PROMPTS = {
    "en": """You are the Oracle, the question master of a trivia game. Write engaging, accurate multiple-choice questions in English.

RULES:
1. Exactly 4 options, each different from the others
2. Exactly one option is correct; "correctAnswer" is its 0-based index
3. The explanation says briefly why the correct answer is right
4. The hint helps without giving the answer away
5. Never repeat or paraphrase a question the player has already seen""",
    "es": """Eres el Oráculo, el maestro de preguntas de un juego de trivia. Escribe preguntas de opción múltiple atractivas y precisas en español.

REGLAS:
1. Exactamente 4 opciones, todas distintas entre sí
2. Exactamente una opción es correcta; "correctAnswer" es su índice empezando en 0
3. La explicación dice brevemente por qué la respuesta correcta lo es
4. La pista ayuda sin revelar la respuesta
5. Nunca repitas ni parafrasees una pregunta que el jugador ya haya visto""",
}

EVALUATOR_SYSTEM_PROMPT = """You are a strict reviewer of trivia questions. Score the question on each criterion from 1 (poor) to 10 (excellent):
- clarity: the question is unambiguous and has exactly one defensible answer
- difficulty: the question is challenging but fair for a general audience
- uniqueness: the question differs from the previous questions; score below 7 if it is too similar to any of them
- explanationQuality: the explanation is accurate and teaches something
- hintQuality: the hint helps without revealing the answer
Set "overallVerdict" to "pass" only if every criterion is acceptable, otherwise "fail".
Put a one-sentence summary of the main problem in "feedback"."""

OPTIMIZER_SYSTEM_PROMPT = """You improve trivia questions that failed review. Revise only the weak parts named in the request and keep everything that scored well.
Keep exactly 4 distinct options with one correct answer, and keep the question in the same language."""

LANGUAGE_NAMES = {"en": "English", "es": "Spanish"}


def _previous_block(previous_questions: Sequence[str]) -> str:
    if not previous_questions:
        return "Previous questions: none"
    lines = "\n".join(f"- {q}" for q in previous_questions)
    return f"Previous questions (do not repeat these):\n{lines}"


def build_generation_prompt(topic: str, previous_questions: Sequence[str], language: Language) -> str:
    return f"""Generate one multiple-choice trivia question about: {topic}
Language: {LANGUAGE_NAMES[language]}

{_previous_block(previous_questions)}

{schema_instructions(TriviaQuestion)}"""


def _question_json(question: TriviaQuestion) -> str:
    return json.dumps(question.model_dump(), ensure_ascii=False, indent=2)


class QuestionGenerator:
    """Asks the model for one question and validates it, retrying on any failure."""

    def __init__(
        self,
        llm: LanguageModel,
        *,
        attempts: int = GENERATION_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.llm = llm
        self.attempts = attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    async def generate(
        self,
        topic: str,
        previous_questions: Sequence[str] = (),
        language: Language = "en",
    ) -> TriviaQuestion:
        topic = topic.strip()
        if not topic:
            raise GenerationError("Topic cannot be empty")

        prompt = build_generation_prompt(topic, previous_questions, language)
        system_message = GENERATOR_SYSTEM_PROMPTS[language]

        async def attempt() -> TriviaQuestion:
            content = await self.llm.complete(prompt, system_message=system_message, caller="generate_question")
            return parse_structured(content, TriviaQuestion)

        return await retry_with_fixed_delay(
            attempt,
            attempts=self.attempts,
            delay=self.retry_delay,
            description="generate_question",
            sleep=self.sleep,
        )


@dataclass
class GateOutcome:
    question: TriviaQuestion
    verdict: str  # 'accepted' | 'unverified'
    cycles: int = 0  # optimizer calls made
    evaluations: list[EvaluationResult] = field(default_factory=list)


class QualityGate:
    """Evaluate a question and, while it fails, ask for a revision.

    The model's own ``overallVerdict`` decides pass or fail. After
    ``max_cycles`` revisions, or as soon as the evaluator or optimizer
    returns something unusable, the latest good question is returned
    unverified instead of failing the request.
    """

    def __init__(self, llm: LanguageModel, *, max_cycles: int = MAX_OPTIMIZE_CYCLES):
        self.llm = llm
        self.max_cycles = max_cycles

    async def evaluate(
        self, question: TriviaQuestion, previous_questions: Sequence[str]
    ) -> EvaluationResult:
        prompt = f"""Evaluate this trivia question.

Question:
{_question_json(question)}

{_previous_block(previous_questions)}

{schema_instructions(EvaluationResult)}"""
        content = await self.llm.complete(prompt, system_message=EVALUATOR_SYSTEM_PROMPT, caller="evaluate_question")
        return parse_structured(content, EvaluationResult)

    async def optimize(
        self,
        question: TriviaQuestion,
        evaluation: EvaluationResult,
        previous_questions: Sequence[str],
        language: Language,
    ) -> TriviaQuestion:
        weak = evaluation.weakest_criteria() or list(evaluation.scores())
        scores = ", ".join(f"{name}={score}" for name, score in evaluation.scores().items())
        prompt = f"""Improve this trivia question. Write it in {LANGUAGE_NAMES[language]}.

Question:
{_question_json(question)}

Review scores (1-10): {scores}
Reviewer feedback: {evaluation.feedback or "none"}
Revise only: {", ".join(weak)}

{_previous_block(previous_questions)}

{schema_instructions(TriviaQuestion)}"""
        content = await self.llm.complete(prompt, system_message=OPTIMIZER_SYSTEM_PROMPT, caller="optimize_question")
        return parse_structured(content, TriviaQuestion)

    async def review(
        self,
        question: TriviaQuestion,
        previous_questions: Sequence[str] = (),
        language: Language = "en",
    ) -> GateOutcome:
        outcome = GateOutcome(question=question, verdict="unverified")
        while True:
            try:
                evaluation = await self.evaluate(outcome.question, previous_questions)
            except Exception as e:
                logger.warning(f"⚠️  Evaluation failed, keeping current question: {e}")
                return outcome
            outcome.evaluations.append(evaluation)

            if evaluation.passed:
                outcome.verdict = "accepted"
                return outcome
            if outcome.cycles >= self.max_cycles:
                logger.info(f"Quality gate gave up after {outcome.cycles} revisions")
                return outcome

            try:
                revised = await self.optimize(outcome.question, evaluation, previous_questions, language)
            except Exception as e:
                logger.warning(f"⚠️  Optimization failed, keeping current question: {e}")
                return outcome
            outcome.question = revised
            outcome.cycles += 1


class QuestionPipeline:
    """Generator followed by the quality gate, when one is configured."""

    def __init__(self, generator: QuestionGenerator, gate: Optional[QualityGate] = None):
        self.generator = generator
        self.gate = gate

    async def next_question(
        self,
        topic: str,
        previous_questions: Sequence[str] = (),
        language: Language = "en",
    ) -> TriviaQuestion:
        question = await self.generator.generate(topic, previous_questions, language)
        event = {"topic": topic, "language": language, "previous_count": len(previous_questions)}

        if self.gate is not None:
            outcome = await self.gate.review(question, previous_questions, language)
            question = outcome.question
            event.update(
                verdict=outcome.verdict,
                cycles=outcome.cycles,
                scores=[e.scores() for e in outcome.evaluations],
            )
            log_pipeline_event("quality_gate", data=event)

        log_pipeline_event("question_generated", data={**event, "question": question.question})
        return question
