import sqlite3
from typing import List, Optional

from amelie.config import MAX_HISTORY
from amelie.db import _id, _now_iso


def _window(max_history: int) -> int:
    return max(1, int(max_history)) * 2


def append(
    conn: sqlite3.Connection,
    chat_id: str,
    sender: str,
    content: str,
    is_bot: bool = False,
    *,
    max_history: int = MAX_HISTORY,
) -> str:
    """Record one message, then drop everything older than the retention window."""
    msg_id = _id("msg")
    conn.execute(
        "INSERT INTO messages (id, chat_id, sender, content, role, created_at) VALUES (?, ?, ?, ?, ?, ?)",
        (msg_id, chat_id, sender, content or "", "bot" if is_bot else "user", _now_iso()),
    )
    conn.commit()
    trim(conn, chat_id, max_history=max_history)
    return msg_id


def trim(conn: sqlite3.Connection, chat_id: str, *, max_history: int = MAX_HISTORY) -> int:
    # LIMIT -1 OFFSET n selects every row past the newest n
    cur = conn.execute(
        "DELETE FROM messages WHERE id IN ("
        "SELECT id FROM messages WHERE chat_id=? "
        "ORDER BY created_at DESC, rowid DESC LIMIT -1 OFFSET ?)",
        (chat_id, _window(max_history)),
    )
    conn.commit()
    return cur.rowcount


def history(conn: sqlite3.Connection, chat_id: str, *, max_history: int = MAX_HISTORY) -> List[str]:
    rows = conn.execute(
        "SELECT sender, content FROM messages WHERE chat_id=? "
        "ORDER BY created_at DESC, rowid DESC LIMIT ?",
        (chat_id, _window(max_history)),
    ).fetchall()
    # newest-first from the query; callers want chronological order
    rows = list(reversed(rows))
    return [f"{r['sender']}: {r['content']}" for r in rows]


def last_bot_message(conn: sqlite3.Connection, chat_id: str) -> Optional[str]:
    row = conn.execute(
        "SELECT content FROM messages WHERE chat_id=? AND role='bot' "
        "ORDER BY created_at DESC, rowid DESC LIMIT 1",
        (chat_id,),
    ).fetchone()
    return row["content"] if row else None


def reset(conn: sqlite3.Connection, chat_id: str) -> int:
    cur = conn.execute("DELETE FROM messages WHERE chat_id=?", (chat_id,))
    conn.commit()
    return cur.rowcount
