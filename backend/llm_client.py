from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import traceback
from pathlib import Path
from typing import Optional, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from errors import ProviderError, SchemaValidationError
from logger import LLMCallTracker, get_llm_logger, get_logger

logger = get_logger("TriviaWars")
llm_log = get_llm_logger()

# The Copilot SDK ships a bundled CLI; it is optional
COPILOT_SDK_AVAILABLE = False
COPILOT_MODULE_INFO = ""
try:
    import copilot
    COPILOT_SDK_AVAILABLE = True
    COPILOT_MODULE_INFO = f"version={getattr(copilot, '__version__', 'unknown')}, path={copilot.__file__}"
except ImportError as e:
    COPILOT_MODULE_INFO = f"Import failed: {e}"

DEFAULT_MODEL = "gpt-4.1"

VALID_MODELS = [
    "claude-sonnet-4.5", "claude-haiku-4.5", "claude-opus-4.5", "claude-sonnet-4",
    "gemini-3-pro-preview", "gpt-5.2-codex", "gpt-5.2", "gpt-5.1-codex-max",
    "gpt-5.1-codex", "gpt-5.1", "gpt-5", "gpt-5.1-codex-mini", "gpt-5-mini", "gpt-4.1",
]

M = TypeVar("M", bound=BaseModel)


class LanguageModel(Protocol):
    async def complete(self, prompt: str, *, system_message: str, caller: str) -> str:
        ...


def find_copilot_cli(explicit_path: str = "") -> Optional[str]:
    """Find the Copilot CLI executable"""
    cli_path = explicit_path or os.environ.get("COPILOT_CLI_PATH", "")
    if cli_path and os.path.exists(cli_path):
        return cli_path

    if COPILOT_SDK_AVAILABLE:
        sdk_cli_path = Path(copilot.__file__).parent / "bin" / "copilot"
        if sdk_cli_path.exists():
            if not os.access(sdk_cli_path, os.X_OK):
                try:
                    os.chmod(sdk_cli_path, 0o755)
                    logger.info(f"✓ Made SDK CLI executable: {sdk_cli_path}")
                except OSError as e:
                    logger.warning(f"⚠️  Could not make SDK CLI executable: {e}")
            if os.access(sdk_cli_path, os.X_OK):
                return str(sdk_cli_path)
            logger.warning(f"⚠️  SDK CLI at {sdk_cli_path} is not executable; skipping this path")

    return shutil.which("copilot")


class CopilotCLIClient:
    """Runs prompts through the Copilot CLI in non-interactive mode."""

    def __init__(self, model: str = DEFAULT_MODEL, cli_path: str = "", timeout: float = 120):
        if model not in VALID_MODELS:
            llm_log.warning("Unrecognized model: %s, using default %s", model, DEFAULT_MODEL)
            model = DEFAULT_MODEL
        self.model = model
        self.cli_path = cli_path
        self.timeout = timeout

    def resolve_cli(self) -> Optional[str]:
        return find_copilot_cli(self.cli_path)

    async def complete(self, prompt: str, *, system_message: str, caller: str = "complete") -> str:
        full_prompt = f"""{system_message}

USER REQUEST:
{prompt}"""

        tracker = LLMCallTracker(endpoint=caller, model=self.model, prompt_chars=len(full_prompt))
        tracker.start()

        llm_log.debug("System message:\n%s", system_message)
        llm_log.debug("User prompt (%d chars):\n%s", len(prompt), prompt)

        cli_path = self.resolve_cli()
        if not cli_path:
            tracker.finish(success=False, error="Copilot CLI not found")
            raise ProviderError(
                "Copilot CLI not found. Install github-copilot-sdk or set COPILOT_CLI_PATH."
            )

        try:
            process = await asyncio.create_subprocess_exec(
                cli_path,
                "-p", full_prompt,
                "-s",
                "--allow-all-tools",
                "--model", self.model,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            tracker.finish(success=False, error=f"Timeout after {self.timeout}s")
            raise ProviderError(f"Copilot CLI timed out after {self.timeout} seconds")
        except OSError as e:
            tracker.finish(success=False, error=f"{type(e).__name__}: {e}")
            llm_log.error("Full traceback:\n%s", traceback.format_exc())
            raise ProviderError(f"Could not run Copilot CLI: {e}") from e

        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()
        if stderr_text:
            llm_log.debug("stderr output:\n%s", stderr_text)

        if process.returncode != 0:
            if "authentication" in stderr_text.lower():
                err_msg = (
                    "Copilot authentication required. Set GITHUB_TOKEN, GH_TOKEN, "
                    "or COPILOT_GITHUB_TOKEN environment variable."
                )
            else:
                err_msg = f"Copilot CLI exit code {process.returncode}: {stderr_text[:200]}"
            tracker.finish(
                success=False,
                error=err_msg,
                exit_code=process.returncode,
                stderr_text=stderr_text,
                stdout_text=stdout_text,
                response_chars=len(stdout_text),
            )
            raise ProviderError(err_msg)

        tracker.finish(
            success=bool(stdout_text),
            error=None if stdout_text else "Empty response",
            exit_code=process.returncode,
            stderr_text=stderr_text,
            stdout_text=stdout_text,
            response_chars=len(stdout_text),
        )
        if not stdout_text:
            raise ProviderError("Empty response from Copilot CLI")

        llm_log.debug("Response (%d chars):\n%s", len(stdout_text), stdout_text[:2000])
        return stdout_text


# --- Structured output ---

def extract_json_payload(content: str) -> dict:
    """Extract a JSON object from a model response."""
    json_match = re.search(r'```(?:json)?\s*([\s\S]*?)```', content or "")
    if json_match:
        content = json_match.group(1).strip()

    json_match = re.search(r'\{[\s\S]*\}', content or "")
    if not json_match:
        raise SchemaValidationError("No JSON object found in response")

    try:
        data = json.loads(json_match.group(0))
    except json.JSONDecodeError as e:
        raise SchemaValidationError(f"Invalid JSON in response: {e}") from e
    if not isinstance(data, dict):
        raise SchemaValidationError("Response JSON is not an object")
    return data


def parse_structured(content: str, model: type[M]) -> M:
    """Parse and validate a model reply against ``model``."""
    data = extract_json_payload(content)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"⚠️  {model.__name__} failed validation: {e.error_count()} error(s)")
        raise SchemaValidationError(f"Response does not match {model.__name__}: {e}") from e


def schema_instructions(model: type[BaseModel]) -> str:
    schema = json.dumps(model.model_json_schema(), indent=2)
    return (
        "OUTPUT FORMAT - Return ONLY one valid JSON object (no markdown, no explanation) "
        f"matching this JSON schema:\n{schema}"
    )
