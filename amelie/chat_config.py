import logging
import math
import sqlite3
from dataclasses import dataclass
from typing import Dict, Optional

from amelie.config import BOT_NAME
from amelie.db import get_chat_config_row, upsert_chat_config_field
from amelie.prompts import get_prompt, parse_bot_name

logger = logging.getLogger(__name__)

# command-facing name -> chat_config column
PARAM_COLUMNS: Dict[str, str] = {
    "temperature": "temperature",
    "topK": "top_k",
    "topP": "top_p",
    "maxOutputTokens": "max_output_tokens",
}

DEFAULT_PARAMS: Dict[str, float] = {
    "temperature": 1.5,
    "topK": 100,
    "topP": 0.95,
    "maxOutputTokens": 1024,
}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class EffectiveConfig:
    temperature: float
    top_k: float
    top_p: float
    max_output_tokens: int
    bot_name: str
    system_instructions: Optional[str] = None


def canonical_param(param: str) -> Optional[str]:
    wanted = (param or "").strip().lower()
    for name in PARAM_COLUMNS:
        if name.lower() == wanted:
            return name
    return None


def format_value(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_number(raw: str) -> float:
    try:
        value = float((raw or "").strip())
    except ValueError:
        raise ConfigError(f"Invalid value {raw!r}. Use a number.")
    if not math.isfinite(value):
        raise ConfigError(f"Invalid value {raw!r}. Use a finite number.")
    return value


def get_params(conn: sqlite3.Connection, chat_id: str) -> Dict[str, float]:
    params = dict(DEFAULT_PARAMS)
    row = get_chat_config_row(conn, chat_id)
    if row is None:
        return params
    for name, column in PARAM_COLUMNS.items():
        if row[column] is not None:
            params[name] = row[column]
    return params


def get_active_prompt_name(conn: sqlite3.Connection, chat_id: str) -> Optional[str]:
    row = get_chat_config_row(conn, chat_id)
    return row["active_prompt_name"] if row else None


def set_param(conn: sqlite3.Connection, chat_id: str, param: str, raw_value: str) -> float:
    """Validate and persist one generation parameter; nothing is written on error."""
    name = canonical_param(param)
    if name is None:
        raise ConfigError(f"Unknown parameter: {param}")
    try:
        value = parse_number(raw_value)
    except ConfigError:
        raise ConfigError(f"Invalid value for {name}. Use a number.")
    upsert_chat_config_field(conn, chat_id, PARAM_COLUMNS[name], value)
    return value


def get_effective(conn: sqlite3.Connection, chat_id: str, *, default_bot_name: str = BOT_NAME) -> EffectiveConfig:
    params = get_params(conn, chat_id)
    instructions = None
    bot_name = default_bot_name

    active = get_active_prompt_name(conn, chat_id)
    if active:
        prompt = get_prompt(conn, chat_id, active)
        if prompt is None:
            logger.debug("chat %s points at missing prompt %r; using defaults", chat_id, active)
        else:
            instructions = prompt.text
            bot_name = parse_bot_name(prompt.text) or default_bot_name

    return EffectiveConfig(
        temperature=float(params["temperature"]),
        top_k=float(params["topK"]),
        top_p=float(params["topP"]),
        max_output_tokens=int(params["maxOutputTokens"]),
        bot_name=bot_name,
        system_instructions=instructions,
    )
