import pytest

from app.constants import UserRole
from app.database import build_engine, build_session_factory, create_schema
from app.models.user import User
from app.services.storage import FilePayload, LocalDocumentStorage
from app.services.team_service import TeamService

PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    bind = build_engine(f"sqlite+aiosqlite:///{(tmp_path / 'kp-test.db').as_posix()}")
    await create_schema(bind)
    yield bind
    await bind.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return LocalDocumentStorage(base_path=str(tmp_path / "blobs"), public_base_url="/files")


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(role: UserRole = UserRole.MAHASISWA, *, user_id=None, nim=None, nama=None):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            id=user_id or f"user-{n}",
            nama=nama or f"Mahasiswa {n}",
            email=f"user{n}@example.ac.id",
            role=role,
            nim=nim if nim is not None else (f"1900{n:04d}" if role == UserRole.MAHASISWA else None),
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def pdf_upload():
    def _make(name: str = "ktp.pdf", content: bytes = PDF_BYTES, content_type: str = "application/pdf"):
        return FilePayload(file_name=name, content=content, content_type=content_type)

    return _make


@pytest.fixture
def fixed_team(db, make_user):
    """Leader plus one accepted member, team finalized."""

    async def _make():
        leader = await make_user()
        member = await make_user()
        service = TeamService(db)
        team = await service.create_team(leader.id)
        invitation = await service.invite_member(team.id, leader.id, member.nim)
        await service.respond_to_invitation(invitation.id, member.id, True)
        await service.finalize_team(team.id, leader.id)
        return team, leader, member

    return _make
