"""Exceptions raised by the question pipeline and the session rules.

Everything here is caught at the HTTP boundary in ``main.py`` and turned
into a ``{"error": ...}`` body; nothing below knows about HTTP.
"""

from typing import Optional


class TriviaError(Exception):
    """Base class for all Trivia Wars errors."""


class ProviderError(TriviaError):
    """The language-model provider failed (missing CLI, timeout, bad exit, empty reply)."""


class SchemaValidationError(TriviaError):
    """A model reply could not be parsed into the expected structure."""


class GenerationError(TriviaError):
    """The generator could not produce a question."""


class MaxRetriesExceeded(GenerationError):
    def __init__(self, description: str, attempts: int, last_error: Optional[BaseException] = None):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")


class SessionError(TriviaError):
    """An operation is not allowed in the current session state."""


class NoHintsRemaining(SessionError):
    pass


class SimilarityUnavailable(TriviaError):
    """The embedding/vector similarity collaborator is not configured."""
