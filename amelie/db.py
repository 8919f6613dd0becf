import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def connect(db_path: Union[Path, str], *, check_same_thread: bool = True) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection, schema_sql: str | None = None) -> None:
    if schema_sql is None:
        schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
    conn.executescript(schema_sql)
    conn.commit()


CHAT_CONFIG_COLUMNS = ("temperature", "top_k", "top_p", "max_output_tokens", "active_prompt_name")


def get_chat_config_row(conn: sqlite3.Connection, chat_id: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT temperature, top_k, top_p, max_output_tokens, active_prompt_name "
        "FROM chat_config WHERE chat_id=?",
        (chat_id,),
    ).fetchone()


def upsert_chat_config_field(conn: sqlite3.Connection, chat_id: str, column: str, value: Any) -> None:
    """Set a single column of the chat's config row, creating the row if needed."""
    if column not in CHAT_CONFIG_COLUMNS:
        raise ValueError(f"Unknown chat_config column: {column}")
    now = _now_iso()
    # column is checked against the allow-list above, so interpolation is safe
    conn.execute(
        f"INSERT INTO chat_config (chat_id, {column}, updated_at) VALUES (?, ?, ?) "
        f"ON CONFLICT(chat_id) DO UPDATE SET {column}=excluded.{column}, updated_at=excluded.updated_at",
        (chat_id, value, now),
    )
    conn.commit()
