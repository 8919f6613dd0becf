import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s value %r; using default %s.", name, raw, default)
    return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


DATA_DIR = Path(_env_str("AMELIE_DATA_DIR") or Path(__file__).resolve().parents[1] / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = DATA_DIR / "amelie.sqlite3"
LOG_PATH = DATA_DIR / "bot.log"

MODEL = _env_str("OPENAI_MODEL", "gpt-4.1-mini")
TRANSCRIBE_MODEL = _env_str("OPENAI_TRANSCRIBE_MODEL", "whisper-1")
# top_k is not a Responses API parameter; only some compatible backends take it
FORWARD_TOP_K = _env_bool("FORWARD_TOP_K")

BOT_NAME = _env_str("BOT_NAME", "Amelie")

# retention depth in user/bot pairs; the store keeps 2 * MAX_HISTORY records
MAX_HISTORY = max(1, _env_int("MAX_HISTORY", 500))

INACTIVITY_RESET_SECONDS = max(1, _env_int("INACTIVITY_RESET_SECONDS", 3600))
INACTIVITY_RESET_HISTORY = _env_bool("INACTIVITY_RESET_HISTORY")
