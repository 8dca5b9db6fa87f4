"""Idempotent schema upgrades applied after metadata.create_all()."""
from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection


def _already_applied(ddl_error: DBAPIError) -> bool:
    message = str(getattr(ddl_error, "orig", ddl_error)).lower()
    return any(
        phrase in message
        for phrase in (
            "duplicate column name",
            "already exists",
        )
    )


async def ensure_response_letter_status_column(conn: AsyncConnection) -> None:
    # Databases created before response letters were tracked lack this column.
    if conn.dialect.name == "sqlite":
        ddl = (
            "ALTER TABLE submissions ADD COLUMN response_letter_status "
            "VARCHAR(16) NOT NULL DEFAULT 'pending'"
        )
    else:
        ddl = (
            "ALTER TABLE submissions ADD COLUMN IF NOT EXISTS response_letter_status "
            "VARCHAR(16) NOT NULL DEFAULT 'pending'"
        )

    try:
        await conn.execute(text(ddl))
    except DBAPIError as ddl_error:
        if not _already_applied(ddl_error):
            raise


async def ensure_team_member_unique_index(conn: AsyncConnection) -> None:
    ddl = (
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_team_members_team_user "
        "ON team_members (team_id, user_id)"
    )
    try:
        await conn.execute(text(ddl))
    except DBAPIError as ddl_error:
        if not _already_applied(ddl_error):
            raise


def upgrade_order() -> tuple:
    return (
        ensure_response_letter_status_column,
        ensure_team_member_unique_index,
    )


async def apply_schema_upgrades(conn: AsyncConnection) -> None:
    for step in upgrade_order():
        await step(conn)
