from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

# Keep test runs out of backend/logs
LOG_DIR = Path(tempfile.mkdtemp(prefix="trivia-logs-"))
os.environ["TRIVIA_LOG_DIR"] = str(LOG_DIR)
os.environ.pop("QUIZ_AUTH_SECRET", None)
os.environ["TRIVIA_SIMILARITY"] = "false"

from logger import setup_logging  # noqa: E402

setup_logging(LOG_DIR)
