from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_LOG_DIR = Path(__file__).parent / "logs"


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings, read from the environment.

    Build one with ``Settings()`` (which reads the environment at call time)
    and pass it to ``create_app``; tests construct it with explicit values.
    """

    # Shared secret for the AI endpoints; empty means dev mode (unprotected)
    auth_secret: str = field(default_factory=lambda: os.environ.get("QUIZ_AUTH_SECRET", ""))
    model: str = field(default_factory=lambda: os.environ.get("QUIZ_COPILOT_MODEL", "gpt-4.1"))
    cli_path: str = field(default_factory=lambda: os.environ.get("COPILOT_CLI_PATH", ""))
    llm_timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("TRIVIA_LLM_TIMEOUT_SECONDS", "120"))
    )
    quality_gate: bool = field(default_factory=lambda: _env_bool("TRIVIA_QUALITY_GATE", "true"))

    similarity: bool = field(default_factory=lambda: _env_bool("TRIVIA_SIMILARITY", "false"))
    embedding_model: str = field(
        default_factory=lambda: os.environ.get("TRIVIA_EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    )
    similarity_threshold: float = field(
        default_factory=lambda: float(os.environ.get("TRIVIA_SIMILARITY_THRESHOLD", "0.8"))
    )
    similarity_count: int = field(
        default_factory=lambda: int(os.environ.get("TRIVIA_SIMILARITY_COUNT", "5"))
    )
    similarity_max_questions: int = field(
        default_factory=lambda: int(os.environ.get("TRIVIA_SIMILARITY_MAX_QUESTIONS", "1000"))
    )

    log_dir: Path = field(
        default_factory=lambda: Path(os.environ.get("TRIVIA_LOG_DIR", str(DEFAULT_LOG_DIR)))
    )
    host: str = field(default_factory=lambda: os.environ.get("TRIVIA_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.environ.get("TRIVIA_PORT", "8000")))

    def verify_auth_token(self, token: str) -> bool:
        if not self.auth_secret:
            return True
        return token == self.auth_secret
