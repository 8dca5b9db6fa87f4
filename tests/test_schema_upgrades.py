import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine

from app import schema_upgrades
from app.database import create_schema


async def _create_legacy_schema(conn):
    await conn.exec_driver_sql(
        """
        CREATE TABLE submissions (
            id INTEGER PRIMARY KEY,
            team_id INTEGER NOT NULL,
            company_name VARCHAR(255),
            status VARCHAR(16) NOT NULL DEFAULT 'DRAFT'
        )
        """
    )
    await conn.exec_driver_sql(
        """
        CREATE TABLE team_members (
            id INTEGER PRIMARY KEY,
            team_id INTEGER NOT NULL,
            user_id VARCHAR(64) NOT NULL,
            role VARCHAR(16) NOT NULL,
            invitation_status VARCHAR(16) NOT NULL
        )
        """
    )


@pytest.mark.anyio
async def test_upgrades_backfill_response_letter_status():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await _create_legacy_schema(conn)
        await conn.execute(text("INSERT INTO submissions (id, team_id, company_name) VALUES (1, 3, 'PT Lama')"))

        await schema_upgrades.apply_schema_upgrades(conn)

        columns = (await conn.exec_driver_sql("PRAGMA table_info('submissions')")).all()
        assert "response_letter_status" in {row[1] for row in columns}
        result = await conn.execute(text("SELECT response_letter_status FROM submissions WHERE id = 1"))
        assert result.scalar_one() == "pending"
    await engine.dispose()


@pytest.mark.anyio
async def test_upgrades_add_unique_membership_index():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await _create_legacy_schema(conn)
        await schema_upgrades.apply_schema_upgrades(conn)
        await conn.execute(
            text(
                "INSERT INTO team_members (team_id, user_id, role, invitation_status) "
                "VALUES (1, 'u-1', 'ANGGOTA', 'PENDING')"
            )
        )
        with pytest.raises(IntegrityError):
            await conn.execute(
                text(
                    "INSERT INTO team_members (team_id, user_id, role, invitation_status) "
                    "VALUES (1, 'u-1', 'ANGGOTA', 'PENDING')"
                )
            )
    await engine.dispose()


@pytest.mark.anyio
async def test_upgrades_are_idempotent(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{(tmp_path / 'kp.db').as_posix()}")
    await create_schema(engine)
    await create_schema(engine)

    async with engine.begin() as conn:
        await schema_upgrades.apply_schema_upgrades(conn)
        indexes = (await conn.exec_driver_sql("PRAGMA index_list('team_members')")).all()
        assert "uq_team_members_team_user" in {row[1] for row in indexes}
    await engine.dispose()
