# src/infra/database.py
"""
PostgreSQL access for the booking store.
Connection pool, retry on connection errors, transactions, schema bootstrap.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, AsyncGenerator, Callable, TypeVar

import asyncpg
from asyncpg import Connection, Pool, Record

from src.common.logger import get_logger, log_error, log_info, log_warning
from src.common.constants import TypeMsg

logger = get_logger("database")

T = TypeVar("T")

# Lock id used while applying migrations/init.sql
SCHEMA_LOCK_ID = 420_815_001


def retry_on_connection_error(
    max_attempts: int = 3,
    delay: float = 1.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retries a coroutine on connection-level errors with a linear delay.

    Args:
        max_attempts: Number of attempts
        delay: Base delay between attempts (seconds)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Exception | None = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except (
                    asyncpg.PostgresConnectionError,
                    asyncpg.InterfaceError,
                    ConnectionRefusedError,
                    OSError,
                ) as e:
                    last_error = e
                    if attempt < max_attempts:
                        await log_warning(
                            f"Database connection error (attempt {attempt}/{max_attempts}): {e}",
                        )
                        await asyncio.sleep(delay * attempt)
                    else:
                        await log_error(f"Database unreachable after {max_attempts} attempts: {e}")

            raise last_error  # type: ignore

        return wrapper  # type: ignore

    return decorator


class DatabaseManager:
    """
    PostgreSQL pool holder (singleton).
    """

    _instance: DatabaseManager | None = None
    _pool: Pool | None = None

    def __new__(cls) -> DatabaseManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._pool = None

    @property
    def pool(self) -> Pool:
        """Connection pool."""
        if self._pool is None:
            raise RuntimeError("Connection pool is not initialized. Call connect() first.")
        return self._pool

    @retry_on_connection_error(max_attempts=3, delay=1.0)
    async def connect(
        self,
        dsn: str | None = None,
        min_size: int = 5,
        max_size: int = 20,
        command_timeout: int = 60,
    ) -> None:
        """
        Creates the connection pool.

        Args:
            dsn: Connection string (taken from config when None)
            min_size: Minimum pool size
            max_size: Maximum pool size
            command_timeout: Statement timeout (seconds)
        """
        if self._pool is not None:
            return

        if dsn is None:
            from src.config import settings
            dsn = settings.database.dsn
            min_size = settings.database.DB_MIN_POOL_SIZE
            max_size = settings.database.DB_MAX_POOL_SIZE
            command_timeout = settings.database.DB_COMMAND_TIMEOUT

        await log_info("Connecting to PostgreSQL...", type_msg=TypeMsg.INFO)

        self._pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
        )

        await log_info("PostgreSQL connection established", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Closes the pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            await log_info("PostgreSQL connection closed", type_msg=TypeMsg.INFO)

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """
        Borrows a connection from the pool.

        Example:
            async with db.acquire() as conn:
                rows = await conn.fetch("SELECT * FROM bookings")
        """
        async with self.pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """
        Borrows a connection inside a transaction.
        Commits on success, rolls back on error.
        """
        async with self.pool.acquire() as connection:
            async with connection.transaction():
                yield connection

    @retry_on_connection_error()
    async def execute(self, query: str, *args: Any) -> str:
        """Runs a statement and returns its status string."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    @retry_on_connection_error()
    async def fetch(self, query: str, *args: Any) -> list[Record]:
        """Runs a query and returns every row."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    @retry_on_connection_error()
    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        """Runs a query and returns the first row or None."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @retry_on_connection_error()
    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        """Runs a query and returns a single value."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    async def health_check(self) -> bool:
        """True when SELECT 1 succeeds."""
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except Exception as e:
            await log_error(f"PostgreSQL health check failed: {e}")
            return False


_db_manager: DatabaseManager | None = None


def get_db() -> DatabaseManager:
    """Returns the global DatabaseManager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def init_db() -> None:
    """
    Connects the global pool and applies migrations/init.sql.
    """
    from src.config import settings

    db = get_db()
    await db.connect(
        dsn=settings.database.dsn,
        min_size=settings.database.DB_MIN_POOL_SIZE,
        max_size=settings.database.DB_MAX_POOL_SIZE,
        command_timeout=settings.database.DB_COMMAND_TIMEOUT,
    )
    await log_info(
        f"PostgreSQL connected: {settings.database.DB_HOST}:{settings.database.DB_PORT}/{settings.database.DB_NAME}",
        type_msg=TypeMsg.INFO,
    )

    await _init_schema(db)


async def _init_schema(db: DatabaseManager) -> None:
    """Applies the bootstrap schema under an advisory lock."""
    from src.config.loader import get_project_root

    schema_path = get_project_root() / "migrations" / "init.sql"
    if not schema_path.exists():
        await log_error(f"Schema file not found: {schema_path}")
        return

    with open(schema_path, "r", encoding="utf-8") as f:
        schema_sql = f.read()

    await log_info("Applying database schema...", type_msg=TypeMsg.INFO)
    try:
        async with db.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID)
            await conn.execute(schema_sql)
    except asyncpg.DuplicateObjectError as e:
        # another instance won the startup race
        await log_warning(f"Schema already present: {e}")
        return

    await log_info("Database schema applied", type_msg=TypeMsg.INFO)


async def close_db() -> None:
    """Closes the global pool."""
    db = get_db()
    await db.disconnect()
    await log_info("PostgreSQL disconnected", type_msg=TypeMsg.INFO)
