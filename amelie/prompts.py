"""
Per-chat registry of named system instructions.

Stored text always opens with a "Your name is X." sentence so the model
introduces itself under the prompt's name and the display name can be parsed
back out when the prompt is active.
"""

import re
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from amelie.db import _now_iso, get_chat_config_row, upsert_chat_config_field

# the name ends at the first dot followed by whitespace or the end of text
_NAME_RE = re.compile(r"^\s*Your name is\s+([^\n]+?)\s*\.(?:\s|$)", re.IGNORECASE)


@dataclass(frozen=True)
class Prompt:
    chat_id: str
    name: str
    text: str


def compose_text(name: str, text: str) -> str:
    return f"Your name is {name}. {text.strip()}".strip()


def parse_bot_name(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = _NAME_RE.match(text)
    if not m:
        return None
    return m.group(1).strip() or None


def _row_to_prompt(row: sqlite3.Row) -> Prompt:
    return Prompt(chat_id=row["chat_id"], name=row["name"], text=row["text"])


def set_prompt(conn: sqlite3.Connection, chat_id: str, name: str, text: str) -> Prompt:
    stored = compose_text(name, text)
    conn.execute(
        "INSERT INTO prompts (chat_id, name, text, updated_at) VALUES (?, ?, ?, ?) "
        "ON CONFLICT(chat_id, name) DO UPDATE SET text=excluded.text, updated_at=excluded.updated_at",
        (chat_id, name, stored, _now_iso()),
    )
    conn.commit()
    return Prompt(chat_id=chat_id, name=name, text=stored)


def get_prompt(conn: sqlite3.Connection, chat_id: str, name: str) -> Optional[Prompt]:
    row = conn.execute(
        "SELECT chat_id, name, text FROM prompts WHERE chat_id=? AND name=?",
        (chat_id, name),
    ).fetchone()
    return _row_to_prompt(row) if row else None


def list_prompts(conn: sqlite3.Connection, chat_id: str) -> List[Prompt]:
    rows = conn.execute(
        "SELECT chat_id, name, text FROM prompts WHERE chat_id=? ORDER BY name",
        (chat_id,),
    ).fetchall()
    return [_row_to_prompt(r) for r in rows]


def activate(conn: sqlite3.Connection, chat_id: str, name: str) -> bool:
    """Point the chat's config at an existing prompt. Returns False if there is no such prompt."""
    if get_prompt(conn, chat_id, name) is None:
        return False
    upsert_chat_config_field(conn, chat_id, "active_prompt_name", name)
    return True


def deactivate(conn: sqlite3.Connection, chat_id: str) -> None:
    if get_chat_config_row(conn, chat_id) is None:
        return
    upsert_chat_config_field(conn, chat_id, "active_prompt_name", None)
