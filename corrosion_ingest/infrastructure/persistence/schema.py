"""Creación idempotente del esquema PostgreSQL (central y plantas)."""

from __future__ import annotations

import logging
import pathlib

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ...core.errors import StorageError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = pathlib.Path(__file__).parent / "migrations"

ROLE_CENTRAL = "central"
ROLE_SITE = "site"


def load_statements(role: str) -> list[str]:
    """Sentencias de las migraciones ``<role>_*.sql`` en orden de nombre."""
    statements: list[str] = []
    for sql_file in sorted(MIGRATIONS_DIR.glob(f"{role}_*.sql")):
        content = "\n".join(
            line for line in sql_file.read_text().splitlines()
            if not line.strip().startswith("--")
        )
        statements.extend(s.strip() for s in content.split(";") if s.strip())
    return statements


async def ensure_schema(engine: AsyncEngine, role: str) -> int:
    """Crea las tablas si no existen. Se puede llamar múltiples veces.

    Returns:
        Cantidad de sentencias ejecutadas
    """
    statements = load_statements(role)
    if not statements:
        logger.warning("[DB] No migration files for role=%s in %s", role, MIGRATIONS_DIR)
        return 0

    logger.info("[DB] Ensuring %s schema (%d statements)", role, len(statements))
    try:
        async with engine.begin() as conn:
            for statement in statements:
                await conn.execute(text(statement))
    except SQLAlchemyError as e:
        logger.exception("[DB] Schema creation failed role=%s", role)
        raise StorageError(f"schema creation failed role={role}: {e}", transient=True) from e

    logger.info("[DB] Schema %s OK", role)
    return len(statements)
