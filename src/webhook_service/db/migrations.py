"""SQL migrations applied on startup and tracked in ``schema_migrations``."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Iterable

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

MIGRATIONS_PATHS = (
    Path(__file__).resolve().parents[3] / "migrations",  # repository checkout
    Path("/app/migrations"),  # container image
)

CONNECT_ATTEMPTS = 5
CONNECT_RETRY_DELAY_SECONDS = 2.0


def find_migrations_dir(candidates: Iterable[Path] = MIGRATIONS_PATHS) -> Path | None:
    for path in candidates:
        if path.is_dir():
            return path
    return None


def load_migrations(migrations_dir: Path) -> dict[str, tuple[str, str]]:
    """Map version (file stem) to ``(sql, sha256 checksum)`` in file-name order."""
    migrations: dict[str, tuple[str, str]] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        if path.stem in migrations:
            raise ValueError(f"Duplicate migration version detected: {path.stem}")
        sql = path.read_text(encoding="utf-8")
        migrations[path.stem] = (sql, hashlib.sha256(sql.encode("utf-8")).hexdigest())
    return migrations


async def _connect() -> asyncpg.Connection:
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            return await asyncpg.connect(str(settings.database_url))
        except (OSError, asyncpg.PostgresError) as exc:
            if attempt == CONNECT_ATTEMPTS:
                raise
            logger.warning(
                "migrations db connect failed",
                attempt=attempt,
                max_attempts=CONNECT_ATTEMPTS,
                error=str(exc),
            )
            await asyncio.sleep(CONNECT_RETRY_DELAY_SECONDS)
    raise RuntimeError("unreachable")


async def apply_migrations(conn: asyncpg.Connection, migrations: dict[str, tuple[str, str]]) -> int:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}

    count = 0
    for version, (sql, checksum) in migrations.items():
        if version in applied:
            if applied[version] != checksum:
                raise RuntimeError(
                    f"Checksum mismatch for {version}: {applied[version]} (db) != {checksum} (file)"
                )
            continue
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                version,
                checksum,
            )
        logger.info("migration applied", version=version)
        count += 1
    return count


async def apply_migrations_on_startup(_app: web.Application) -> None:
    migrations_dir = find_migrations_dir()
    if migrations_dir is None:
        logger.warning("migrations directory not found", tried=[str(p) for p in MIGRATIONS_PATHS])
        return
    migrations = load_migrations(migrations_dir)
    if not migrations:
        logger.warning("no migrations found", path=str(migrations_dir))
        return

    conn = await _connect()
    try:
        applied = await apply_migrations(conn, migrations)
    finally:
        await conn.close()
    logger.info("migrations up to date", applied=applied, total=len(migrations))
