import json
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from .config import validate_config_value
from .db import connect_db
from .utils import now_ts, ts_to_iso


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cur = conn.execute("SELECT key, value FROM config")
    return {r["key"]: r["value"] for r in cur.fetchall()}


def set_config(conn, key: str, value: str):
    value = validate_config_value(key, value)
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, value),
        )


# ---------- Options: durable key/value ----------
def _encode(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def _prefix_clause() -> str:
    # substr() instead of LIKE: '_' in action names must match literally
    return "substr(key, 1, ?) = ?"


def get_option(conn, key: str, default: Any = None) -> Any:
    row = conn.execute("SELECT value FROM options WHERE key=?", (key,)).fetchone()
    if not row:
        return default
    return json.loads(row["value"])


def update_option(conn, key: str, value: Any):
    with conn:
        conn.execute(
            "INSERT INTO options(key,value,updated_at) VALUES(?,?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, _encode(value), ts_to_iso(now_ts())),
        )


def add_option(conn, key: str, value: Any) -> bool:
    """Insert only if the key is absent. Returns False when it already exists."""
    with conn:
        cur = conn.execute(
            "INSERT OR IGNORE INTO options(key,value,updated_at) VALUES(?,?,?)",
            (key, _encode(value), ts_to_iso(now_ts())),
        )
    return cur.rowcount == 1


def compare_and_swap(conn, key: str, expected: Any, new: Any) -> bool:
    with conn:
        cur = conn.execute(
            "UPDATE options SET value=?, updated_at=? WHERE key=? AND value=?",
            (_encode(new), ts_to_iso(now_ts()), key, _encode(expected)),
        )
    return cur.rowcount == 1


def delete_option(conn, key: str) -> bool:
    with conn:
        cur = conn.execute("DELETE FROM options WHERE key=?", (key,))
    return cur.rowcount == 1


def list_options(conn, prefix: str) -> List[Tuple[str, Any]]:
    rows = conn.execute(
        f"SELECT key, value FROM options WHERE {_prefix_clause()} ORDER BY rowid ASC",
        (len(prefix), prefix),
    ).fetchall()
    return [(r["key"], json.loads(r["value"])) for r in rows]


def first_option(conn, prefix: str) -> Optional[Tuple[str, Any]]:
    """Oldest option under `prefix`, without reading the rest."""
    row = conn.execute(
        f"SELECT key, value FROM options WHERE {_prefix_clause()} ORDER BY rowid ASC LIMIT 1",
        (len(prefix), prefix),
    ).fetchone()
    if not row:
        return None
    return row["key"], json.loads(row["value"])


def delete_options(conn, prefix: str) -> int:
    with conn:
        cur = conn.execute(
            f"DELETE FROM options WHERE {_prefix_clause()}",
            (len(prefix), prefix),
        )
    return cur.rowcount


# ---------- Locks ----------
def acquire_lock(conn, key: str, duration: int, now: Optional[int] = None) -> bool:
    now = now_ts() if now is None else now
    if add_option(conn, key, now + duration):
        return True
    held_until = get_option(conn, key)
    if held_until is not None and int(held_until) > now:
        return False
    # expired (or vanished between the two statements): exactly one taker wins
    if held_until is None:
        return add_option(conn, key, now + duration)
    return compare_and_swap(conn, key, held_until, now + duration)


def renew_lock(conn, key: str, duration: int, now: Optional[int] = None) -> bool:
    """Push a held lock's expiry out to now + duration. False if nobody holds it."""
    now = now_ts() if now is None else now
    held_until = get_option(conn, key)
    if held_until is None:
        return False
    return compare_and_swap(conn, key, held_until, now + duration)


def release_lock(conn, key: str) -> bool:
    return delete_option(conn, key)


def is_locked(conn, key: str, now: Optional[int] = None) -> bool:
    now = now_ts() if now is None else now
    held_until = get_option(conn, key)
    return held_until is not None and int(held_until) > now


class OptionStore:
    """Option access that opens one connection per call.

    Execution windows may run on dispatcher threads, and sqlite connections
    must not cross threads, so nothing here keeps a connection around.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    @contextmanager
    def connection(self):
        conn = connect_db(self.db_path)
        try:
            yield conn
        except sqlite3.Error as e:
            raise RuntimeError(f"DB error in option store: {e}") from e
        finally:
            conn.close()

    def get(self, key: str, default: Any = None) -> Any:
        with self.connection() as conn:
            return get_option(conn, key, default)

    def update(self, key: str, value: Any):
        with self.connection() as conn:
            update_option(conn, key, value)

    def add(self, key: str, value: Any) -> bool:
        with self.connection() as conn:
            return add_option(conn, key, value)

    def delete(self, key: str) -> bool:
        with self.connection() as conn:
            return delete_option(conn, key)

    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        with self.connection() as conn:
            return list_options(conn, prefix)

    def first(self, prefix: str) -> Optional[Tuple[str, Any]]:
        with self.connection() as conn:
            return first_option(conn, prefix)

    def delete_prefix(self, prefix: str) -> int:
        with self.connection() as conn:
            return delete_options(conn, prefix)

    def acquire_lock(self, key: str, duration: int, now: Optional[int] = None) -> bool:
        with self.connection() as conn:
            return acquire_lock(conn, key, duration, now)

    def renew_lock(self, key: str, duration: int, now: Optional[int] = None) -> bool:
        with self.connection() as conn:
            return renew_lock(conn, key, duration, now)

    def release_lock(self, key: str) -> bool:
        with self.connection() as conn:
            return release_lock(conn, key)

    def is_locked(self, key: str, now: Optional[int] = None) -> bool:
        with self.connection() as conn:
            return is_locked(conn, key, now)

    def get_config(self) -> Dict[str, str]:
        with self.connection() as conn:
            return get_config(conn)

    def set_config(self, key: str, value: str):
        with self.connection() as conn:
            set_config(conn, key, value)
