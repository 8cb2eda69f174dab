"""Configuration for the form agent."""

import logging
import os
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from a .env file when present.
load_dotenv()

logger = logging.getLogger(__name__)

DATASET_ROOT = Path("datasets")

PROFILE_FILE = Path(os.getenv("FORM_AGENT_PROFILE", "profile.txt"))

RUN_CONFIG_FILE = Path(os.getenv("FORM_AGENT_CONFIG", "config.txt"))

PROCESSED_EVENTS_FILE = Path("events.txt")

FAILED_EVENTS_FILE = Path("to_register.txt")

ORACLE_MODEL = os.getenv("FORM_AGENT_MODEL", "llama-3.3-70b-versatile")

ORACLE_SEQUENCE_MODEL = os.getenv("FORM_AGENT_SEQUENCE_MODEL", "llama-3.1-8b-instant")

ORACLE_BASE_URL = os.getenv("FORM_AGENT_BASE_URL", "https://api.groq.com/openai/v1")

ORACLE_TIMEOUT_S = 90.0
ORACLE_MAX_ATTEMPTS = 3
ORACLE_BACKOFF_S = 2.0
ORACLE_RATE_LIMIT_BACKOFF_S = 10.0
ORACLE_TEMPERATURE = 0.1

# Written into mandatory text fields the oracle could not answer.
FALLBACK_TEXT = "n/a"

USER_DATA_DIR = Path("profiles/default")

DEFAULT_BROWSER = os.getenv("AGENT_BROWSER", "chromium").lower()

PLAYWRIGHT_CHANNEL = os.getenv("PLAYWRIGHT_CHANNEL", "chrome")

_default_chrome_path = Path("/Applications/Google Chrome.app/Contents/MacOS/Google Chrome")

PLAYWRIGHT_EXECUTABLE = os.getenv("PLAYWRIGHT_EXECUTABLE")
if not PLAYWRIGHT_EXECUTABLE and _default_chrome_path.exists():
    PLAYWRIGHT_EXECUTABLE = str(_default_chrome_path)


class Bounds(BaseModel):
    """Upper bounds (milliseconds) for page waits; every wait degrades instead of blocking."""

    modal_ms: int = 15000
    submit_ready_ms: int = 10000
    field_ms: int = 5000
    option_pause_ms: int = 300
    option_panel_ms: int = 5000
    option_match_ms: int = 500
    option_dismiss_ms: int = 2000
    checkbox_flip_ms: int = 300
    terms_dialog_ms: int = 4000
    terms_close_ms: int = 5000
    submission_hidden_ms: int = 7000
    between_fields_ms: int = 250
    status_ms: int = 3000
    page_load_ms: int = 60000


DEFAULT_BOUNDS = Bounds()


def get_oracle_api_key() -> str | None:
    """Return the oracle API key or None when it is not configured."""
    return (
        os.getenv("FORM_AGENT_API_KEY")
        or os.getenv("GROQ_API_KEY")
        or os.getenv("OPENAI_API_KEY")
        or None
    )


def load_run_config(path: Path | None = None) -> Dict[str, str]:
    """Parse a ``KEY=value`` run configuration file.

    Missing or unreadable files yield an empty mapping; ``BROWSER`` defaults to
    ``DEFAULT_BROWSER``.
    """
    config_path = path or RUN_CONFIG_FILE
    config: Dict[str, str] = {}
    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not read run config %s: %s", config_path, exc)
        return config

    for line in content.splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        key, value = line.split("=", 1)
        key, value = key.strip(), value.strip()
        if key and value:
            config[key] = value

    config.setdefault("BROWSER", DEFAULT_BROWSER)
    logger.debug("Run config loaded from %s: keys=%s", config_path, sorted(config))
    return config
