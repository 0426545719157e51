"""
Trivia Wars Backend Logging
===========================
Rotating file-based logging with a dedicated language-model call log and
token-usage tracking. Logs are written to  backend/logs/  unless
TRIVIA_LOG_DIR points elsewhere.

Log files produced:
  - trivia.log              General backend log (all levels)
  - llm.log                 Copilot CLI call details (prompts, responses, timing)
  - token_usage.jsonl       One JSON object per model call, for spend analysis
  - pipeline_events.jsonl   Structured pipeline events (generation, gate verdicts, similarity)
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from config import DEFAULT_LOG_DIR

# ---------------------------------------------------------------------------
# Request / Correlation ID
# ---------------------------------------------------------------------------

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(rid: str | None = None) -> str:
    """Set a correlation ID for the current request context. Returns the ID."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def get_request_id() -> str:
    return _request_id.get("-")


LOG_DIR: Path = DEFAULT_LOG_DIR

_VERBOSE_FMT = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)-20s | [%(request_id)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    defaults={"request_id": "-"},
)

_CONSOLE_FMT = logging.Formatter(
    fmt="%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)


def _rotating_handler(
    filename: str,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
    raw: bool = False,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        LOG_DIR / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    # JSONL lines are written without a prefix
    handler.setFormatter(logging.Formatter("%(message)s") if raw else _VERBOSE_FMT)
    return handler


_CONFIGURED = False


class _RequestIdFilter(logging.Filter):
    """Inject the current request_id context var into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()  # type: ignore[attr-defined]
        return True


def setup_logging(log_dir: Path | None = None, *, console_level: int = logging.INFO) -> None:
    """Initialise all loggers.  Safe to call more than once; only the first call counts."""
    global _CONFIGURED, LOG_DIR
    if _CONFIGURED:
        return
    _CONFIGURED = True

    LOG_DIR = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    rid_filter = _RequestIdFilter()

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(_CONSOLE_FMT)
    console.addFilter(rid_filter)
    root.addHandler(console)

    general = _rotating_handler("trivia.log")
    general.addFilter(rid_filter)
    root.addHandler(general)

    llm_logger = logging.getLogger("llm")
    llm_logger.setLevel(logging.DEBUG)
    llm_handler = _rotating_handler("llm.log")
    llm_handler.addFilter(rid_filter)
    llm_logger.addHandler(llm_handler)

    token_logger = logging.getLogger("llm.tokens")
    token_logger.setLevel(logging.DEBUG)
    token_logger.addHandler(
        _rotating_handler("token_usage.jsonl", max_bytes=10 * 1024 * 1024, backup_count=10, raw=True)
    )
    token_logger.propagate = False

    event_logger = logging.getLogger("pipeline.events")
    event_logger.setLevel(logging.DEBUG)
    event_logger.addHandler(
        _rotating_handler("pipeline_events.jsonl", max_bytes=10 * 1024 * 1024, backup_count=10, raw=True)
    )
    event_logger.propagate = False

    logging.getLogger("TriviaWars").info(
        f"📁 Logging initialised – log directory: {LOG_DIR.resolve()}"
    )


def get_logger(name: str = "TriviaWars") -> logging.Logger:
    return logging.getLogger(name)


def get_llm_logger() -> logging.Logger:
    return logging.getLogger("llm")


def get_token_logger() -> logging.Logger:
    return logging.getLogger("llm.tokens")


def get_event_logger() -> logging.Logger:
    return logging.getLogger("pipeline.events")


def log_pipeline_event(event_type: str, *, data: dict[str, Any] | None = None) -> None:
    """Write a structured JSON line to pipeline_events.jsonl."""
    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
        "request_id": get_request_id(),
    }
    if data:
        record.update(data)
    get_event_logger().info(json.dumps(record, default=str))


# ---------------------------------------------------------------------------
# Token-usage helpers
# ---------------------------------------------------------------------------

class LLMCallTracker:
    """Times a language-model call and writes one usage record when it finishes."""

    def __init__(
        self,
        *,
        endpoint: str,
        model: str,
        prompt_chars: int = 0,
    ):
        self.endpoint = endpoint
        self.model = model
        self.prompt_chars = prompt_chars
        self._start: float = 0.0
        self._finished = False
        self._log = get_llm_logger()
        self._token_log = get_token_logger()

    def start(self) -> "LLMCallTracker":
        self._start = time.time()
        self._log.info(
            "┌─ LLM call START  endpoint=%s  model=%s  prompt_chars=%d",
            self.endpoint,
            self.model,
            self.prompt_chars,
        )
        return self

    @property
    def finished(self) -> bool:
        return self._finished

    def finish(
        self,
        *,
        response_chars: int = 0,
        success: bool = True,
        error: str | None = None,
        exit_code: int | None = None,
        stderr_text: str = "",
        stdout_text: str = "",
    ) -> dict[str, Any]:
        self._finished = True
        elapsed_ms = int((time.time() - self._start) * 1000)

        usage = _extract_token_usage(stderr_text, stdout_text)
        if not usage:
            # ~4 chars per token is a rough GPT-family heuristic
            prompt_est = self.prompt_chars // 4
            completion_est = response_chars // 4
            usage = {
                "estimated": True,
                "prompt_tokens_est": prompt_est,
                "completion_tokens_est": completion_est,
                "total_tokens_est": prompt_est + completion_est,
            }

        record: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": get_request_id(),
            "endpoint": self.endpoint,
            "model": self.model,
            "prompt_chars": self.prompt_chars,
            "response_chars": response_chars,
            "elapsed_ms": elapsed_ms,
            "success": success,
            "exit_code": exit_code,
            "error": error,
            "token_usage": usage,
        }
        self._token_log.info(json.dumps(record, default=str))

        status = "OK" if success else f"FAIL ({error})"
        self._log.info(
            "└─ LLM call END    endpoint=%s  status=%s  %dms  prompt=%d chars  response=%d chars",
            self.endpoint,
            status,
            elapsed_ms,
            self.prompt_chars,
            response_chars,
        )
        return record


def _extract_token_usage(stderr: str, stdout: str) -> dict[str, Any]:
    """
    Best-effort extraction of token usage from CLI output.

    Looks for an embedded ``"usage": {...}`` JSON block first, then for
    ``prompt_tokens: 123`` style lines. Returns an empty dict when nothing
    is found so the caller can fall back to estimates.
    """
    usage: dict[str, Any] = {}
    combined = (stderr or "") + "\n" + (stdout or "")

    usage_json = re.search(r'"usage"\s*:\s*\{([^}]+)\}', combined, re.IGNORECASE)
    if usage_json:
        try:
            blob = json.loads("{" + usage_json.group(1) + "}")
            for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
                if key in blob:
                    usage[key] = int(blob[key])
        except (json.JSONDecodeError, ValueError):
            pass

    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        match = re.search(rf"{key}\s*[:=]\s*(\d+)", combined, re.IGNORECASE)
        if match and key not in usage:
            usage[key] = int(match.group(1))

    if usage and "total_tokens" not in usage:
        usage["total_tokens"] = usage.get("prompt_tokens", 0) + usage.get("completion_tokens", 0)

    return usage


def _read_usage_records(path: Path, cutoff: float) -> list[dict[str, Any]]:
    records = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                rec = json.loads(line)
                ts = datetime.fromisoformat(rec.get("timestamp", "")).timestamp()
            except (json.JSONDecodeError, ValueError, TypeError):
                continue
            if ts >= cutoff:
                records.append(rec)
    return records


def _tokens(rec: dict[str, Any], kind: str) -> int:
    usage = rec.get("token_usage") or {}
    return usage.get(f"{kind}_tokens", usage.get(f"{kind}_tokens_est", 0))


def _call_ref(rec: dict[str, Any] | None) -> dict[str, Any] | None:
    if rec is None:
        return None
    return {
        "endpoint": rec.get("endpoint", "unknown"),
        "elapsed_ms": rec.get("elapsed_ms", 0),
        "timestamp": rec.get("timestamp"),
    }


def summarize_token_usage(since_hours: float = 24, log_dir: Optional[Path] = None) -> dict[str, Any]:
    """Aggregate token_usage.jsonl over the last ``since_hours`` hours."""
    path = Path(log_dir or LOG_DIR) / "token_usage.jsonl"
    if not path.exists():
        return {"error": "No token_usage.jsonl found", "calls": 0}

    calls = _read_usage_records(path, time.time() - since_hours * 3600)
    n = len(calls)
    failed = sum(1 for c in calls if not c.get("success"))
    prompt_tokens = sum(_tokens(c, "prompt") for c in calls)
    completion_tokens = sum(_tokens(c, "completion") for c in calls)
    elapsed = sum(c.get("elapsed_ms", 0) for c in calls)
    by_elapsed = sorted(calls, key=lambda c: c.get("elapsed_ms", 0))

    endpoints: dict[str, int] = {}
    for c in calls:
        ep = c.get("endpoint", "unknown")
        endpoints[ep] = endpoints.get(ep, 0) + 1

    return {
        "period_hours": since_hours,
        "total_calls": n,
        "successful_calls": n - failed,
        "failed_calls": failed,
        "error_rate_pct": round(failed / max(n, 1) * 100, 1),
        "total_prompt_tokens": prompt_tokens,
        "total_completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
        "total_elapsed_ms": elapsed,
        "avg_elapsed_ms": elapsed // max(n, 1),
        "slowest_call": _call_ref(by_elapsed[-1] if by_elapsed else None),
        "fastest_call": _call_ref(by_elapsed[0] if by_elapsed else None),
        "endpoint_breakdown": endpoints,
        "models_used": sorted({c.get("model", "unknown") for c in calls}),
    }
