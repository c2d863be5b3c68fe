"""
SQLite-backed user document store.

Each user owns one JSON document in ``bot_users``. Callers address values
with dotted paths rooted at ``user_<id>``:

    db_get("user_42.watchlist.tokens")
    db_set("user_42.ai.enabled", True)
    db_push("user_42.ai.history", entry, max_len=200)

Every write is a read-modify-write of the whole document; there are no
multi-key transactions. ``alert_log`` keeps a flat record of dispatched
alerts for the daily summary.
"""
import json
import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from config import DB_PATH

USER_PREFIX = "user_"
_PATH_RE = re.compile(r"^user_(.+?)(?:\.(.+))?$")
_write_lock = threading.Lock()


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_PATH, timeout=15)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db():
    os.makedirs(os.path.dirname(DB_PATH) or ".", exist_ok=True)

    with get_conn() as conn:
        cur = conn.cursor()

        cur.execute("""
        CREATE TABLE IF NOT EXISTS bot_users (
            user_id TEXT PRIMARY KEY,
            data TEXT NOT NULL,
            updated_ts_utc TEXT
        );
        """)

        cur.execute("""
        CREATE TABLE IF NOT EXISTS alert_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ts_utc TEXT NOT NULL,
            user_id TEXT NOT NULL,
            symbol TEXT,
            address TEXT,
            trigger TEXT NOT NULL,
            price REAL
        );
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_alert_log_user_ts ON alert_log(user_id, ts_utc);")


def _split_path(path: str):
    m = _PATH_RE.match(str(path or ""))
    if not m:
        return None, []
    keys = m.group(2).split(".") if m.group(2) else []
    return m.group(1), keys


def _load_doc(conn, user_id: str):
    row = conn.execute("SELECT data FROM bot_users WHERE user_id = ?", (user_id,)).fetchone()
    if not row:
        return None
    try:
        doc = json.loads(row["data"])
    except ValueError:
        return None
    return doc if isinstance(doc, dict) else None


def _save_doc(conn, user_id: str, doc: dict):
    conn.execute(
        """
        INSERT INTO bot_users (user_id, data, updated_ts_utc) VALUES (?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET data = excluded.data, updated_ts_utc = excluded.updated_ts_utc
        """,
        (user_id, json.dumps(doc, separators=(",", ":")), datetime.now(timezone.utc).isoformat()),
    )


def _parent_for_write(doc: dict, keys: list[str]) -> dict:
    ref = doc
    for key in keys[:-1]:
        if not isinstance(ref.get(key), dict):
            ref[key] = {}
        ref = ref[key]
    return ref


def db_get(path: str, default=None):
    user_id, keys = _split_path(path)
    if user_id is None:
        return default
    with get_conn() as conn:
        doc = _load_doc(conn, user_id)
    if doc is None:
        return default
    ref = doc
    for key in keys:
        if not isinstance(ref, dict) or key not in ref:
            return default
        ref = ref[key]
    return ref


def db_set(path: str, value):
    """Write ``value`` at ``path``. A bare ``user_<id>`` path merges a dict into the document."""
    user_id, keys = _split_path(path)
    if user_id is None:
        return
    with _write_lock, get_conn() as conn:
        doc = _load_doc(conn, user_id) or {}
        if keys:
            _parent_for_write(doc, keys)[keys[-1]] = value
        elif isinstance(value, dict):
            doc.update(value)
        _save_doc(conn, user_id, doc)


def db_push(path: str, value, max_len: int | None = None):
    """Append ``value`` to the list at ``path``; keep only the newest ``max_len`` items."""
    user_id, keys = _split_path(path)
    if user_id is None or not keys:
        return
    with _write_lock, get_conn() as conn:
        doc = _load_doc(conn, user_id) or {}
        parent = _parent_for_write(doc, keys)
        items = parent.get(keys[-1])
        if not isinstance(items, list):
            items = []
        items.append(value)
        if max_len and len(items) > max_len:
            items = items[-max_len:]
        parent[keys[-1]] = items
        _save_doc(conn, user_id, doc)


def db_update(path: str, fn, default=None):
    """
    Read-modify-write of the value at ``path`` under the write lock.

    ``fn`` receives the current value (or ``default``) and returns
    ``(new_value, result)``. A ``new_value`` of None leaves the document
    untouched. Returns ``result``.
    """
    user_id, keys = _split_path(path)
    if user_id is None or not keys:
        raise ValueError(f"db_update needs a field path, got {path!r}")
    with _write_lock, get_conn() as conn:
        doc = _load_doc(conn, user_id) or {}
        parent = _parent_for_write(doc, keys)
        new_value, result = fn(parent.get(keys[-1], default))
        if new_value is not None:
            parent[keys[-1]] = new_value
            _save_doc(conn, user_id, doc)
    return result


def db_all() -> list[dict]:
    with get_conn() as conn:
        rows = conn.execute("SELECT user_id, data FROM bot_users ORDER BY user_id").fetchall()
    out = []
    for row in rows:
        try:
            data = json.loads(row["data"])
        except ValueError:
            data = {}
        out.append({"id": f"{USER_PREFIX}{row['user_id']}", "data": data})
    return out


def list_user_ids() -> list[str]:
    return [
        item["id"][len(USER_PREFIX):]
        for item in db_all()
        if str(item.get("id", "")).startswith(USER_PREFIX)
    ]


def log_alert(user_id, symbol: str | None, address: str | None, trigger: str, price: float | None = None):
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO alert_log (ts_utc, user_id, symbol, address, trigger, price)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                datetime.now(timezone.utc).isoformat(),
                str(user_id),
                symbol,
                address,
                trigger,
                price,
            ),
        )


def count_alerts_since(user_id, lookback_hours: int = 24) -> int:
    cutoff = (datetime.now(timezone.utc) - timedelta(hours=lookback_hours)).isoformat()
    with get_conn() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM alert_log WHERE user_id = ? AND ts_utc >= ?",
            (str(user_id), cutoff),
        ).fetchone()
    return int(row["n"] or 0) if row else 0
