"""
User settings storage.

Two interchangeable stores: a JSON document on disk for single-process
deployments, and PostgreSQL with connection pooling. Both hand out
``UserRecord`` models and need an explicit ``save()`` after changes.
"""
import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor

from palaver.models import UserRecord
from palaver.models.schemas import utcnow

logger = logging.getLogger(__name__)


class UserStore(ABC):
    """Key-value store of user records with create-if-absent lookup"""

    @abstractmethod
    async def get_or_create(self, user_id: str) -> UserRecord:
        """Get a user, or create (and persist) it if it doesn't exist."""

    @abstractmethod
    async def update(self, user: UserRecord) -> None:
        """Stage a modified record; call ``save`` to flush it."""

    @abstractmethod
    async def save(self) -> None:
        """Flush staged changes."""

    async def close(self) -> None:
        pass


class JsonUserStore(UserStore):
    """All users in one JSON file, rewritten atomically on save"""

    def __init__(self, path: str = "store.json"):
        self.path = path
        self._users: Dict[str, Dict[str, Any]] = {}
        if os.path.exists(path):
            with open(path, encoding="utf-8") as f:
                self._users = json.load(f).get("users", {})
            logger.info(f"Loaded {len(self._users)} users from {path}")

    async def get_or_create(self, user_id: str) -> UserRecord:
        data = self._users.get(user_id)
        if data is not None:
            return UserRecord.model_validate(data)

        user = UserRecord(user_id=user_id)
        self._users[user_id] = user.model_dump(mode="json")
        await self.save()
        return user

    async def update(self, user: UserRecord) -> None:
        user.updated_at = utcnow()
        self._users[user.user_id] = user.model_dump(mode="json")

    async def save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"users": self._users}, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise


class Database:
    """Database connection manager with connection pooling"""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 10):
        self.dsn = dsn
        self.connection_pool = None
        self._initialize_pool(minconn, maxconn)

    def _initialize_pool(self, minconn: int, maxconn: int):
        """Initialize connection pool"""
        try:
            self.connection_pool = pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                dsn=self.dsn,
                cursor_factory=RealDictCursor,
                connect_timeout=10,
            )
            logger.info(f"Database connection pool initialized (min={minconn}, max={maxconn})")
        except Exception as e:
            logger.error(f"Failed to initialize connection pool: {str(e)}")
            raise

    @contextmanager
    def get_connection(self):
        """Get a database connection from the pool, discarding it if it broke"""
        conn = self.connection_pool.getconn()
        conn_is_bad = False
        try:
            yield conn
            conn.commit()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            conn_is_bad = True
            logger.error(f"Connection error (will discard connection): {str(e)}")
            raise
        except Exception:
            try:
                conn.rollback()
            except psycopg2.Error:
                conn_is_bad = True
            raise
        finally:
            self.connection_pool.putconn(conn, close=conn_is_bad)

    def execute(self, query: str, params: Optional[tuple] = None, max_retries: int = 2) -> List[Dict[str, Any]]:
        """Run a statement with automatic retry on connection errors"""
        for attempt in range(max_retries + 1):
            try:
                with self.get_connection() as conn:
                    with conn.cursor() as cursor:
                        cursor.execute(query, params)
                        return cursor.fetchall() if cursor.description else []
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                if attempt < max_retries:
                    logger.warning(f"Query failed (attempt {attempt + 1}/{max_retries + 1}), retrying: {str(e)}")
                    continue
                raise
        return []

    def close_all_connections(self):
        """Close all connections in the pool (call on shutdown)"""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("All database connections closed")


class PostgresUserStore(UserStore):
    """
    Users in a PostgreSQL table.

    Writes go straight to the database in ``update``; ``save`` has nothing
    left to flush. Blocking driver calls run in a worker thread.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            settings JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """

    def __init__(self, db: Database):
        self.db = db
        self.db.execute(self.SCHEMA)

    @classmethod
    def connect(cls, dsn: str) -> "PostgresUserStore":
        return cls(Database(dsn))

    async def get_or_create(self, user_id: str) -> UserRecord:
        rows = await asyncio.to_thread(self.db.execute, """
            INSERT INTO users (user_id) VALUES (%s)
            ON CONFLICT (user_id) DO UPDATE SET user_id = EXCLUDED.user_id
            RETURNING user_id, settings, created_at, updated_at
        """, (user_id,))
        return UserRecord.model_validate(dict(rows[0]))

    async def update(self, user: UserRecord) -> None:
        user.updated_at = utcnow()
        await asyncio.to_thread(self.db.execute, """
            UPDATE users SET settings = %s, updated_at = %s WHERE user_id = %s
        """, (Json(user.settings.model_dump(mode="json")), user.updated_at, user.user_id))

    async def save(self) -> None:
        pass

    async def close(self) -> None:
        self.db.close_all_connections()
