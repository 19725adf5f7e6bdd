"""
SQLite database helpers.
- Creates tables if missing.
- Auto-migrates missing columns on existing DBs.
- Tiny query helper `q` to execute SQL with parameters.
- Verified-user CRUD used by the verification flow and admin commands.
"""
import os
import sqlite3
from pathlib import Path
from typing import Iterable, Any

# Database file lives at project/followcheck/../bot.db
DB_PATH = Path(os.getenv("BOT_DB_PATH") or (Path(__file__).resolve().parent.parent / "bot.db"))


def connect() -> sqlite3.Connection:
    """
    Create a SQLite connection with row_factory returning dict-like rows.
    """
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def _add_column_if_missing(conn: sqlite3.Connection, table: str, column: str, coltype: str) -> None:
    """
    Idempotent migration: add a column if it doesn't already exist.
    """
    cur = conn.execute(f"PRAGMA table_info({table})")
    cols = {row["name"] for row in cur.fetchall()}
    if column not in cols:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {coltype}")
        conn.commit()


def init_db() -> None:
    """
    Initialize database schema if not present and apply lightweight migrations.
    """
    conn = connect()
    cur = conn.cursor()
    cur.executescript(
        """
        PRAGMA journal_mode = WAL;

        -- Telegram users that passed verification
        CREATE TABLE IF NOT EXISTS users (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            tg_user_id    INTEGER UNIQUE,   -- telegram user id
            telegram_name TEXT,
            x_username    TEXT,             -- claimed X handle, no '@'
            verified      INTEGER DEFAULT 0,
            created_at    TEXT              -- when they were verified
            -- (is_banned / last_active are added via migration below)
        );
        """
    )
    conn.commit()

    # ---- Lightweight migrations (safe to run every start) ----
    _add_column_if_missing(conn, "users", "is_banned", "INTEGER DEFAULT 0")
    _add_column_if_missing(conn, "users", "last_active", "TEXT")

    conn.close()


def q(conn: sqlite3.Connection, sql: str, params: Iterable[Any] | None = None) -> sqlite3.Cursor:
    """
    Execute a parameterized SQL query and return the cursor.
    """
    cur = conn.cursor()
    cur.execute(sql, tuple(params or []))
    return cur


# ───────────────────────────── Users ───────────────────────────── #

def record_verified_user(tg_user_id: int, telegram_name: str, x_username: str) -> None:
    conn = connect()
    try:
        q(conn,
          "INSERT INTO users(tg_user_id,telegram_name,x_username,verified,created_at,last_active) "
          "VALUES(?,?,?,1,datetime('now'),datetime('now')) "
          "ON CONFLICT(tg_user_id) DO UPDATE SET telegram_name=excluded.telegram_name, "
          "x_username=excluded.x_username, verified=1, created_at=datetime('now'), "
          "last_active=datetime('now')",
          [tg_user_id, telegram_name, x_username])
        conn.commit()
    finally:
        conn.close()


def get_user(tg_user_id: int) -> sqlite3.Row | None:
    conn = connect()
    try:
        return q(conn, "SELECT * FROM users WHERE tg_user_id=?", [tg_user_id]).fetchone()
    finally:
        conn.close()


def remove_user(tg_user_id: int) -> bool:
    conn = connect()
    try:
        cur = q(conn, "DELETE FROM users WHERE tg_user_id=?", [tg_user_id])
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def touch_user(tg_user_id: int) -> None:
    conn = connect()
    try:
        q(conn, "UPDATE users SET last_active=datetime('now') WHERE tg_user_id=?", [tg_user_id])
        conn.commit()
    finally:
        conn.close()


def list_verified_users(exclude_id: int | None = None) -> list[sqlite3.Row]:
    """
    Verified, non-banned users, newest first. `exclude_id` is usually the admin.
    """
    conn = connect()
    try:
        return q(conn,
                 "SELECT * FROM users WHERE verified=1 AND COALESCE(is_banned,0)=0 AND tg_user_id<>? "
                 "ORDER BY created_at DESC, id DESC",
                 [exclude_id if exclude_id is not None else 0]).fetchall()
    finally:
        conn.close()


def find_verified_by_handle(x_username: str) -> sqlite3.Row | None:
    conn = connect()
    try:
        return q(conn,
                 "SELECT * FROM users WHERE verified=1 AND lower(x_username)=lower(?)",
                 [(x_username or "").lstrip("@")]).fetchone()
    finally:
        conn.close()


def set_banned(tg_user_id: int, banned: bool) -> None:
    conn = connect()
    try:
        q(conn, "UPDATE users SET is_banned=? WHERE tg_user_id=?", [1 if banned else 0, tg_user_id])
        conn.commit()
    finally:
        conn.close()


def get_stats() -> dict[str, int]:
    conn = connect()
    try:
        row = q(conn,
                "SELECT "
                " SUM(CASE WHEN verified=1 THEN 1 ELSE 0 END) AS total, "
                " SUM(CASE WHEN COALESCE(is_banned,0)=1 THEN 1 ELSE 0 END) AS banned, "
                " SUM(CASE WHEN last_active > datetime('now','-1 day') THEN 1 ELSE 0 END) AS today, "
                " SUM(CASE WHEN last_active > datetime('now','-7 day') THEN 1 ELSE 0 END) AS week "
                "FROM users").fetchone()
        return {
            "total_users": row["total"] or 0,
            "banned": row["banned"] or 0,
            "active_today": row["today"] or 0,
            "active_week": row["week"] or 0,
        }
    finally:
        conn.close()
