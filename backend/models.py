from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator
from typing import Literal, Optional
from dataclasses import dataclass, field
import math

from errors import NoHintsRemaining, SessionError


Language = Literal["en", "es"]

OPTION_COUNT = 4

# Game constants shared with the browser client
TOTAL_QUESTIONS = 15
VICTORY_PERCENTAGE = 0.9
REQUIRED_SCORE = max(1, math.ceil(TOTAL_QUESTIONS * VICTORY_PERCENTAGE))
DEFAULT_HINTS = min(3, REQUIRED_SCORE)


class TriviaQuestion(BaseModel):
    question: str = Field(min_length=1)
    options: list[str] = Field(min_length=OPTION_COUNT, max_length=OPTION_COUNT)
    correctAnswer: int = Field(strict=True)  # 0-indexed into options; no bool or "2"
    explanation: str = Field(min_length=1)
    hint: str = Field(min_length=1)

    @field_validator("question", "explanation", "hint")
    @classmethod
    def text_not_blank(cls, value: str, info: ValidationInfo) -> str:
        if not value.strip():
            raise ValueError(f"{info.field_name} must not be blank")
        return value

    @field_validator("options")
    @classmethod
    def options_distinct(cls, value: list[str]) -> list[str]:
        normalized = [option.strip().casefold() for option in value]
        if any(not option for option in normalized):
            raise ValueError("options must not be blank")
        if len(set(normalized)) != len(normalized):
            raise ValueError("options must be distinct")
        return value

    @model_validator(mode="after")
    def correct_answer_in_range(self) -> "TriviaQuestion":
        if not 0 <= self.correctAnswer < len(self.options):
            raise ValueError(f"correctAnswer {self.correctAnswer} is not a valid option index")
        return self


CRITERIA = ("clarity", "difficulty", "uniqueness", "explanationQuality", "hintQuality")


class EvaluationResult(BaseModel):
    clarity: int = Field(ge=1, le=10)
    difficulty: int = Field(ge=1, le=10)
    uniqueness: int = Field(ge=1, le=10)  # below 7 when too close to a previous question
    explanationQuality: int = Field(ge=1, le=10)
    hintQuality: int = Field(ge=1, le=10)
    overallVerdict: Literal["pass", "fail"]
    feedback: str = ""

    @property
    def passed(self) -> bool:
        return self.overallVerdict == "pass"

    def scores(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in CRITERIA}

    def weakest_criteria(self, threshold: int = 7) -> list[str]:
        """Criteria scoring below ``threshold``, lowest first.

        Only used to steer the optimizer prompt; the verdict alone decides
        whether a question passes.
        """
        low = [(score, name) for name, score in self.scores().items() if score < threshold]
        return [name for _, name in sorted(low)]


class GameConfig(BaseModel):
    totalQuestions: int = TOTAL_QUESTIONS
    victoryPercentage: float = VICTORY_PERCENTAGE
    requiredScore: int = REQUIRED_SCORE
    defaultHints: int = DEFAULT_HINTS


class AnswerOutcome(BaseModel):
    correct: bool
    correctAnswer: int
    explanation: str
    score: int
    status: str


@dataclass
class TriviaSession:
    """One player's run through a topic.

    Lives only in memory for as long as the client keeps it; nothing is
    stored server-side.
    """
    topic: str
    language: Language = "en"
    total_questions: int = TOTAL_QUESTIONS
    required_score: int = REQUIRED_SCORE
    score: int = 0
    hints_remaining: int = DEFAULT_HINTS
    current_question_index: int = 0
    previous_questions: list[str] = field(default_factory=list)
    current_question: Optional[TriviaQuestion] = None
    hint_used_on_current: bool = False
    answers: list[int] = field(default_factory=list)

    @property
    def mistakes(self) -> int:
        return len(self.answers) - self.score

    @property
    def status(self) -> str:
        if self.mistakes > self.total_questions - self.required_score:
            return 'lost'
        if self.current_question_index >= self.total_questions:
            return 'won'
        return 'playing'

    @property
    def is_finished(self) -> bool:
        return self.status != 'playing'

    def present(self, question: TriviaQuestion) -> None:
        """Make ``question`` the one awaiting an answer"""
        if self.is_finished:
            raise SessionError(f"Session is over ({self.status})")
        if self.current_question is not None:
            raise SessionError("The current question has not been answered yet")
        self.current_question = question
        self.hint_used_on_current = False
        self.previous_questions.append(question.question)

    def use_hint(self) -> str:
        if self.current_question is None:
            raise SessionError("No question to give a hint for")
        if self.hint_used_on_current:
            return self.current_question.hint
        if self.hints_remaining <= 0:
            raise NoHintsRemaining("No hints remaining")
        self.hints_remaining -= 1
        self.hint_used_on_current = True
        return self.current_question.hint

    def answer(self, choice: int) -> AnswerOutcome:
        question = self.current_question
        if question is None:
            raise SessionError("No question is waiting for an answer")
        if not 0 <= choice < len(question.options):
            raise SessionError(f"Choice {choice} is out of range")

        correct = choice == question.correctAnswer
        if correct:
            self.score += 1
        self.answers.append(choice)
        self.current_question_index += 1
        self.current_question = None

        return AnswerOutcome(
            correct=correct,
            correctAnswer=question.correctAnswer,
            explanation=question.explanation,
            score=self.score,
            status=self.status,
        )
