import sqlite3
import logging
import re
from contextlib import contextmanager, asynccontextmanager
from typing import Any, List, Optional, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)

# Global Connection Pools
pg_pool = None
async_pg_pool = None

_PLACEHOLDER_PATTERN = r"(\'[^\']*\'|\"[^\"]*\")|\?"

# ─── SYNC PostgreSQL Wrapper (Celery workers) ────────────────────────────────
class PostgresCursor:
    """Wraps psycopg2 cursor for Sync contexts"""
    def __init__(self, cursor):
        self.cursor = cursor

    def execute(self, sql: str, params: Tuple = ()) -> Any:
        def replace_placeholder(match):
            if match.group(1): return match.group(1)
            return "%s"
        pg_sql = re.sub(_PLACEHOLDER_PATTERN, replace_placeholder, sql)
        return self.cursor.execute(pg_sql, params)

    def fetchone(self) -> Optional[Any]:
        return self.cursor.fetchone()

    def fetchall(self) -> List[Any]:
        return self.cursor.fetchall()

    def close(self):
        self.cursor.close()

    def __getattr__(self, name):
        return getattr(self.cursor, name)

class PostgresConnection:
    """Wraps psycopg2 connection for Sync contexts"""
    def __init__(self, conn, pool=None):
        self.conn = conn
        self.pool = pool

    def cursor(self):
        return PostgresCursor(self.conn.cursor())

    def execute(self, sql: str, params: Tuple = ()) -> PostgresCursor:
        cursor = self.cursor()
        cursor.execute(sql, params)
        return cursor

    def commit(self):
        self.conn.commit()

    def close(self):
        if self.pool:
            self.pool.putconn(self.conn)
        else:
            self.conn.close()

    def __getattr__(self, name):
        return getattr(self.conn, name)

# ─── ASYNC PostgreSQL Wrapper (FastAPI) ──────────────────────────────────────
class AsyncPostgresCursor:
    """Wraps asyncpg connection to support '?' placeholders"""
    def __init__(self, conn):
        self.conn = conn
        self._last_result = None

    async def execute(self, sql: str, params: Tuple = ()) -> Any:
        # asyncpg uses $1, $2, $3. We must convert ? -> $n
        params = list(params)

        counter = 0
        def replace_placeholder(match):
            nonlocal counter
            if match.group(1): return match.group(1)
            counter += 1
            return f"${counter}"

        pg_sql = re.sub(_PLACEHOLDER_PATTERN, replace_placeholder, sql)

        self._last_result = await self.conn.fetch(pg_sql, *params)
        return self

    async def fetchone(self) -> Optional[Any]:
        if self._last_result and len(self._last_result) > 0:
            return self._last_result[0]
        return None

    async def fetchall(self) -> List[Any]:
        return self._last_result or []

class AsyncPostgresConnection:
    """Wraps asyncpg pool connection"""
    def __init__(self, conn, pool=None):
        self.conn = conn
        self.pool = pool

    def cursor(self):
        return AsyncPostgresCursor(self.conn)

    async def execute(self, sql: str, params: Tuple = ()) -> AsyncPostgresCursor:
        cursor = self.cursor()
        await cursor.execute(sql, params)
        return cursor

    async def commit(self):
        pass # asyncpg auto-commits outside explicit transactions

# ─── ASYNC SQLite Wrapper (FastAPI) ──────────────────────────────────────────
class AsyncSqliteConnection:
    """Wraps aiosqlite connection"""
    def __init__(self, conn):
        self.conn = conn

    async def execute(self, sql: str, params: Tuple = ()):
        return await self.conn.execute(sql, params)

    async def commit(self):
        await self.conn.commit()

# ─── Initialization ──────────────────────────────────────────────────────────
def init_db():
    """Sync Initialization (Schema Creation) - Runs on Startup"""
    if settings.DATABASE_URL:
        _init_postgres_sync()
    else:
        _init_sqlite_sync()

async def init_async_db():
    """Async Initialization (Pool Creation)"""
    if settings.DATABASE_URL:
        global async_pg_pool
        import asyncpg
        if not async_pg_pool:
            async_pg_pool = await asyncpg.create_pool(
                dsn=settings.DATABASE_URL,
                min_size=1,
                max_size=20
            )
            logger.info("Async PostgreSQL Pool initialized.")

def close_db():
    """Sync Cleanup"""
    global pg_pool
    if pg_pool:
        pg_pool.closeall()
        pg_pool = None
        logger.info("Sync PostgreSQL Pool closed.")

async def close_async_db():
    """Async Cleanup"""
    global async_pg_pool
    if async_pg_pool:
        await async_pg_pool.close()
        async_pg_pool = None
        logger.info("Async PostgreSQL Pool closed.")

# ─── Schema ──────────────────────────────────────────────────────────────────
# Timestamps are stored as UTC "YYYY-MM-DD HH:MM:SS" text so both backends
# compare them the same way.
_CVS_TABLE = """
    CREATE TABLE IF NOT EXISTS cvs (
        document_id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        original_filename TEXT,
        file_type TEXT,
        file_size INTEGER DEFAULT 0,
        raw_text TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL,
        model_used TEXT,
        structured_cv TEXT,
        structured_registration TEXT,
        preview_markup TEXT,
        processing_error TEXT,
        processed_at TEXT,
        attempt_id TEXT,
        headshot_ref TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        version INTEGER DEFAULT 0
    )
"""

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_cvs_owner ON cvs(owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_cvs_status ON cvs(status)",
]

def _init_sqlite_sync():
    conn = sqlite3.connect(settings.SQLITE_PATH)
    try:
        cursor = conn.cursor()
        _create_schema(cursor)
        # Migrations for databases created before headshots existed
        try:
            cursor.execute("ALTER TABLE cvs ADD COLUMN headshot_ref TEXT")
        except sqlite3.OperationalError:
            pass  # column already present
        conn.commit()
    finally:
        conn.close()

def _init_postgres_sync():
    global pg_pool
    try:
        import psycopg2
        from psycopg2 import pool
        from psycopg2.extras import RealDictCursor

        if not pg_pool:
            pg_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1, maxconn=20,
                dsn=settings.DATABASE_URL,
                cursor_factory=RealDictCursor
            )

        conn = pg_pool.getconn()
        try:
            cursor = conn.cursor()
            _create_schema(cursor)
            cursor.execute("ALTER TABLE cvs ADD COLUMN IF NOT EXISTS headshot_ref TEXT")
            conn.commit()
        finally:
            pg_pool.putconn(conn)
    except Exception as e:
        logger.error(f"Postgres Init Failed: {e}")
        raise e

def _create_schema(cursor):
    cursor.execute(_CVS_TABLE)
    for statement in _INDEXES:
        cursor.execute(statement)

# ─── Context Factories ───────────────────────────────────────────────────────
@contextmanager
def get_db_connection():
    """Sync Connection (Celery workers / executor threads)"""
    if settings.DATABASE_URL:
        global pg_pool
        if not pg_pool: _init_postgres_sync()
        conn = pg_pool.getconn()
        pg_conn = PostgresConnection(conn, pg_pool)
        try: yield pg_conn
        finally: pg_conn.close()
    else:
        conn = sqlite3.connect(settings.SQLITE_PATH, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try: yield conn
        finally: conn.close()

@asynccontextmanager
async def get_async_db_connection():
    """Async Connection (FastAPI)"""
    if settings.DATABASE_URL:
        global async_pg_pool
        if not async_pg_pool: await init_async_db()
        async with async_pg_pool.acquire() as conn:
            yield AsyncPostgresConnection(conn, async_pg_pool)
    else:
        import aiosqlite
        async with aiosqlite.connect(settings.SQLITE_PATH) as conn:
            conn.row_factory = aiosqlite.Row
            yield AsyncSqliteConnection(conn)
