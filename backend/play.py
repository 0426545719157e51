"""Play a Trivia Wars session in the terminal.

    python play.py --topic astronomy
    python play.py --topic "historia de México" --language es --no-quality-gate

Uses the same question pipeline as the HTTP API; the session itself lives
only in memory for the length of the game.
"""

import argparse
import asyncio
import logging
from typing import Awaitable, Callable

from config import Settings
from errors import NoHintsRemaining, TriviaError
from llm_client import CopilotCLIClient
from logger import get_logger, setup_logging
from models import TriviaSession
from question_pipeline import QualityGate, QuestionGenerator, QuestionPipeline

logger = get_logger("TriviaWars.play")

OPTION_LABELS = "ABCD"

MESSAGES = {
    "en": {
        "question": "Question {n}/{total}",
        "prompt": "Your answer (1-4, h for a hint): ",
        "hint": "💡 Hint: {hint} ({left} left)",
        "no_hints": "No hints left.",
        "invalid": "Type 1, 2, 3, 4 or h.",
        "correct": "✅ Correct!",
        "wrong": "❌ Wrong. The answer was {answer}.",
        "score": "Score: {score}  |  Hints: {hints}",
        "won": "🏆 You defeated the Oracle with {score}/{total}!",
        "lost": "💀 The Oracle wins. Final score: {score}/{total} (needed {required}).",
        "failed": "The Oracle is silent. Please try again.",
    },
    "es": {
        "question": "Pregunta {n}/{total}",
        "prompt": "Tu respuesta (1-4, h para una pista): ",
        "hint": "💡 Pista: {hint} (quedan {left})",
        "no_hints": "No te quedan pistas.",
        "invalid": "Escribe 1, 2, 3, 4 o h.",
        "correct": "✅ ¡Correcto!",
        "wrong": "❌ Incorrecto. La respuesta era {answer}.",
        "score": "Puntuación: {score}  |  Pistas: {hints}",
        "won": "🏆 ¡Derrotaste al Oráculo con {score}/{total}!",
        "lost": "💀 El Oráculo gana. Puntuación final: {score}/{total} (se necesitaban {required}).",
        "failed": "El Oráculo guarda silencio. Inténtalo de nuevo.",
    },
}


def _read_choice(session: TriviaSession, ask: Callable[[str], str], say: Callable[[str], None]) -> int:
    t = MESSAGES[session.language]
    while True:
        reply = ask(t["prompt"]).strip().lower()
        if reply == "h":
            try:
                hint = session.use_hint()
            except NoHintsRemaining:
                say(t["no_hints"])
                continue
            say(t["hint"].format(hint=hint, left=session.hints_remaining))
        elif reply in ("1", "2", "3", "4"):
            return int(reply) - 1
        else:
            say(t["invalid"])


async def run_session(
    session: TriviaSession,
    pipeline: QuestionPipeline,
    ask: Callable[[str], str] = input,
    say: Callable[[str], None] = print,
) -> str:
    """Play ``session`` to the end and return its final status.

    Returns ``"error"`` when a question could not be generated.
    """
    t = MESSAGES[session.language]
    while not session.is_finished:
        try:
            question = await pipeline.next_question(session.topic, session.previous_questions, session.language)
        except TriviaError as e:
            logger.error(f"❌ Could not generate question: {e}")
            say(t["failed"])
            return "error"

        session.present(question)
        say("")
        say(t["question"].format(n=session.current_question_index + 1, total=session.total_questions))
        say(question.question)
        for label, option in zip(OPTION_LABELS, question.options):
            say(f"  {label}) {option}")

        outcome = session.answer(_read_choice(session, ask, say))
        if outcome.correct:
            say(t["correct"])
        else:
            say(t["wrong"].format(answer=OPTION_LABELS[outcome.correctAnswer]))
        say(outcome.explanation)
        say(t["score"].format(score=session.score, hints=session.hints_remaining))

    key = "won" if session.status == "won" else "lost"
    say("")
    say(t[key].format(score=session.score, total=session.total_questions, required=session.required_score))
    return session.status


def build_cli_pipeline(settings: Settings, quality_gate: bool) -> QuestionPipeline:
    llm = CopilotCLIClient(model=settings.model, cli_path=settings.cli_path, timeout=settings.llm_timeout_seconds)
    gate = QualityGate(llm) if quality_gate else None
    return QuestionPipeline(QuestionGenerator(llm), gate)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Play Trivia Wars in the terminal")
    ap.add_argument("--topic", required=True)
    ap.add_argument("--language", choices=["en", "es"], default="en")
    ap.add_argument("--no-quality-gate", action="store_true", help="Skip the evaluate/optimize loop")
    args = ap.parse_args(argv)

    settings = Settings()
    setup_logging(settings.log_dir, console_level=logging.WARNING)
    pipeline = build_cli_pipeline(settings, quality_gate=settings.quality_gate and not args.no_quality_gate)

    session = TriviaSession(topic=args.topic, language=args.language)
    status = asyncio.run(run_session(session, pipeline))
    return 0 if status == "won" else 1


if __name__ == "__main__":
    raise SystemExit(main())
