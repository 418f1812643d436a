import json
from datetime import datetime
from pathlib import Path

import aiosqlite

from tile_recommender.models.llm import dump_messages
from tile_recommender.models.schemas import ChatSession


async def init_db(db_path: str):
    """Create tables if they don't exist. Called once on app startup."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript("""
            CREATE TABLE IF NOT EXISTS products (
                id                  TEXT PRIMARY KEY,
                name                TEXT NOT NULL,
                description         TEXT,
                brand               TEXT NOT NULL,
                price               REAL NOT NULL,
                discount            REAL NOT NULL DEFAULT 0,
                tiles_per_box       INTEGER NOT NULL,
                is_best_seller      INTEGER NOT NULL DEFAULT 0,
                is_new_arrivals     INTEGER NOT NULL DEFAULT 0,
                image               TEXT,
                recommended         TEXT NOT NULL DEFAULT '[]',
                width               REAL NOT NULL,
                height              REAL NOT NULL,
                application         TEXT NOT NULL DEFAULT '[]',
                design              TEXT NOT NULL,
                color               TEXT NOT NULL DEFAULT '[]',
                finishing           TEXT NOT NULL,
                texture             TEXT NOT NULL,
                is_water_resistant  INTEGER NOT NULL DEFAULT 0,
                is_slip_resistant   INTEGER NOT NULL DEFAULT 0,
                created_at          TEXT NOT NULL,
                updated_at          TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS chat_sessions (
                session_id      TEXT PRIMARY KEY,
                messages        TEXT NOT NULL,
                display_history TEXT NOT NULL,
                last_products   TEXT NOT NULL,
                version         INTEGER NOT NULL DEFAULT 0,
                created_at      TEXT NOT NULL,
                updated_at      TEXT NOT NULL,
                expires_at      TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_chat_sessions_expires
                ON chat_sessions(expires_at);
        """)
        await db.commit()


def to_db_time(value: datetime) -> str:
    # Fixed width so expiry comparisons can be done on the strings
    return value.isoformat(timespec="microseconds")


def _session_from_row(row: aiosqlite.Row) -> ChatSession:
    return ChatSession(
        session_id=row["session_id"],
        messages=json.loads(row["messages"]),
        display_history=json.loads(row["display_history"]),
        last_products=json.loads(row["last_products"]),
        version=row["version"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
    )


def _dump_list(items) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items])


# --- Chat session CRUD ---

async def create_chat_session(db_path: str, session: ChatSession):
    """Insert a new session. The primary key rejects a duplicate session_id."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            INSERT INTO chat_sessions
                (session_id, messages, display_history, last_products, version,
                 created_at, updated_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.session_id,
                json.dumps(dump_messages(session.messages)),
                _dump_list(session.display_history),
                _dump_list(session.last_products),
                session.version,
                to_db_time(session.created_at),
                to_db_time(session.updated_at),
                to_db_time(session.expires_at),
            ),
        )
        await db.commit()


async def get_chat_session(db_path: str, session_id: str, now: datetime) -> ChatSession | None:
    """Fetch a live session by ID. Expired sessions are treated as missing."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM chat_sessions WHERE session_id = ? AND expires_at > ?",
            (session_id, to_db_time(now)),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _session_from_row(row)


async def update_chat_session(db_path: str, session: ChatSession, expected_version: int) -> bool:
    """Write the mutable fields back if nobody else updated the session first.

    Returns False when the stored version no longer matches ``expected_version``.
    """
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            """
            UPDATE chat_sessions
               SET messages = ?, display_history = ?, last_products = ?,
                   version = ?, updated_at = ?, expires_at = ?
             WHERE session_id = ? AND version = ?
            """,
            (
                json.dumps(dump_messages(session.messages)),
                _dump_list(session.display_history),
                _dump_list(session.last_products),
                session.version,
                to_db_time(session.updated_at),
                to_db_time(session.expires_at),
                session.session_id,
                expected_version,
            ),
        )
        await db.commit()
        return cursor.rowcount == 1


async def delete_chat_session(db_path: str, session_id: str, now: datetime) -> bool:
    """Delete a live session. Returns False if it was absent or already expired."""
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "DELETE FROM chat_sessions WHERE session_id = ? AND expires_at > ?",
            (session_id, to_db_time(now)),
        )
        await db.commit()
        return cursor.rowcount == 1


async def purge_expired_sessions(db_path: str, now: datetime) -> int:
    """Remove every session whose expiry has passed. Returns the number removed."""
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "DELETE FROM chat_sessions WHERE expires_at <= ?",
            (to_db_time(now),),
        )
        await db.commit()
        return cursor.rowcount
