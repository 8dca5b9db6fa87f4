import pytest
from sqlalchemy import func, select, text

from app.constants import DocumentType, LetterFormat, SubmissionStatus, UserRole
from app.errors import (
    BadRequestError,
    InvalidSubmissionStatus,
    LetterNumberExhausted,
    RejectionReasonRequired,
    SubmissionNotFound,
)
from app.models.generated_letter import GeneratedLetter
from app.models.team import Team
from app.services.admin_service import AdminService
from app.services.letter_renderer import LetterRenderer
from app.services.letter_service import LetterService, format_letter_number
from app.services.submission_service import SubmissionService
from app.services.team_service import TeamService
from app.utils import utcnow

COMPANY = {
    "company_name": "PT Nusantara Digital",
    "company_address": "Jl. Sudirman 1, Jakarta",
    "company_supervisor": "Ibu Sari",
    "position": "Backend Intern",
}


class StubRenderer(LetterRenderer):
    def render_letter(self, data, letter_number, fmt):
        return f"{letter_number}|{data.company_name}|{len(data.members)}".encode()


@pytest.fixture
def pending_submission(db, storage, pdf_upload, fixed_team):
    async def _make():
        team, leader, member = await fixed_team()
        service = SubmissionService(db, storage)
        submission = await service.create_submission(team.id, leader.id, COMPANY)
        await service.upload_document(submission.id, member.id, pdf_upload(), "KTP")
        await service.submit_for_review(submission.id, leader.id)
        return submission

    return _make


@pytest.fixture
def admin_service(db, storage):
    return AdminService(db, LetterService(db, storage, StubRenderer()))


@pytest.mark.anyio
async def test_list_and_detail_include_team(db, make_user, admin_service, pending_submission):
    submission = await pending_submission()

    pending = await admin_service.list_submissions(SubmissionStatus.MENUNGGU)
    assert [view["id"] for view in pending] == [submission.id]
    assert len(pending[0]["team"]["members"]) == 2
    assert pending[0]["documents"][0]["document_type"] == DocumentType.KTP

    assert await admin_service.list_submissions("DITERIMA") == []
    with pytest.raises(BadRequestError):
        await admin_service.list_submissions("UNKNOWN")

    detail = await admin_service.get_submission_detail(submission.id)
    assert detail["company_name"] == COMPANY["company_name"]
    with pytest.raises(SubmissionNotFound):
        await admin_service.get_submission_detail(9999)


@pytest.mark.anyio
async def test_approve_stamps_reviewer(db, make_user, admin_service, pending_submission):
    submission = await pending_submission()
    admin = await make_user(UserRole.KAPRODI)

    result = await admin_service.approve_submission(submission.id, admin.id)

    assert result["letter"] is None
    assert result["submission"]["status"] == SubmissionStatus.DITERIMA
    assert result["submission"]["approved_by"] == admin.id
    assert result["submission"]["approved_at"] is not None
    assert result["submission"]["rejection_reason"] is None

    with pytest.raises(InvalidSubmissionStatus):
        await admin_service.approve_submission(submission.id, admin.id)


@pytest.mark.anyio
async def test_approve_with_letter(db, make_user, storage, admin_service, pending_submission):
    submission = await pending_submission()
    admin = await make_user(UserRole.ADMIN)

    result = await admin_service.approve_submission(
        submission.id,
        admin.id,
        auto_generate_letter=True,
        letter_format=LetterFormat.DOCX,
    )

    letter = result["letter"]
    assert letter["letter_number"] == format_letter_number(1, utcnow())
    assert letter["file_type"] == LetterFormat.DOCX
    assert letter["file_name"].startswith("letters/")
    stored = await storage.get(letter["file_name"])
    assert stored.decode().startswith(letter["letter_number"])
    assert stored.decode().endswith("|2")


@pytest.mark.anyio
async def test_reject_requires_reason(db, make_user, admin_service, pending_submission):
    submission = await pending_submission()
    admin = await make_user(UserRole.WAKIL_DEKAN)

    with pytest.raises(RejectionReasonRequired):
        await admin_service.reject_submission(submission.id, admin.id, "   ")

    rejected = await admin_service.reject_submission(submission.id, admin.id, "Dokumen KRS belum ada")
    assert rejected.status == SubmissionStatus.DITOLAK
    assert rejected.rejection_reason == "Dokumen KRS belum ada"
    assert rejected.approved_at is None

    with pytest.raises(InvalidSubmissionStatus):
        await admin_service.reject_submission(submission.id, admin.id, "again")


@pytest.mark.anyio
async def test_status_dispatcher(db, make_user, admin_service, pending_submission):
    first = await pending_submission()
    admin = await make_user(UserRole.ADMIN)

    with pytest.raises(BadRequestError):
        await admin_service.update_submission_status(first.id, admin.id, "MAYBE")

    rejected = await admin_service.update_submission_status(first.id, admin.id, "rejected", "Tidak sesuai")
    assert rejected["submission"]["status"] == SubmissionStatus.DITOLAK
    assert rejected["letter"] is None


@pytest.mark.anyio
async def test_letters_only_for_approved(db, make_user, admin_service, pending_submission):
    submission = await pending_submission()
    admin = await make_user(UserRole.ADMIN)

    with pytest.raises(InvalidSubmissionStatus) as excinfo:
        await admin_service.generate_letter(submission.id, admin.id)
    assert excinfo.value.status_code == 409


@pytest.mark.anyio
async def test_letter_numbers_are_unique(db, make_user, storage, admin_service, pending_submission):
    submission = await pending_submission()
    admin = await make_user(UserRole.ADMIN)
    await admin_service.approve_submission(submission.id, admin.id)

    numbers = [
        (await admin_service.generate_letter(submission.id, admin.id))["letter_number"]
        for _ in range(3)
    ]

    now = utcnow()
    assert numbers == [format_letter_number(n, now) for n in (1, 2, 3)]
    letters = await LetterService(db, storage).list_letters(submission.id)
    assert len(letters) == 3
    assert len({letter.letter_number for letter in letters}) == 3


@pytest.mark.anyio
async def test_taken_number_is_skipped(db, make_user, storage, admin_service, pending_submission):
    submission = await pending_submission()
    admin = await make_user(UserRole.ADMIN)
    await admin_service.approve_submission(submission.id, admin.id)
    now = utcnow()
    db.add(
        GeneratedLetter(
            submission_id=submission.id,
            letter_number=format_letter_number(2, now),
            file_name="letters/manual.pdf",
            file_url="/files/letters/manual.pdf",
            file_type=LetterFormat.PDF,
            generated_by=admin.id,
            generated_at=now,
        )
    )
    await db.commit()

    letter = await admin_service.generate_letter(submission.id, admin.id)

    assert letter["letter_number"] == format_letter_number(3, now)


@pytest.mark.anyio
async def test_letter_number_exhausted(db, make_user, storage, pending_submission):
    class AlwaysTaken(LetterService):
        async def _number_taken(self, number):
            return True

    submission = await pending_submission()
    admin = await make_user(UserRole.ADMIN)
    service = AdminService(db, AlwaysTaken(db, storage, StubRenderer(), max_attempts=3))
    await service.approve_submission(submission.id, admin.id)

    with pytest.raises(LetterNumberExhausted):
        await service.generate_letter(submission.id, admin.id)
    assert await db.scalar(select(func.count(GeneratedLetter.id))) == 0


@pytest.mark.anyio
async def test_statistics(db, make_user, admin_service, pending_submission):
    submission = await pending_submission()
    admin = await make_user(UserRole.ADMIN)
    await admin_service.approve_submission(submission.id, admin.id)

    stats = await admin_service.get_statistics()

    assert stats == {"total": 1, "draft": 0, "pending": 0, "approved": 1, "rejected": 0}


@pytest.mark.anyio
async def test_numbering_continues_after_team_deletion(db, make_user, storage, pending_submission):
    # a single attempt: the next number must be right the first time
    admin_service = AdminService(db, LetterService(db, storage, StubRenderer(), max_attempts=1))
    admin = await make_user(UserRole.ADMIN)
    first = await pending_submission()
    second = await pending_submission()
    for submission in (first, second):
        await admin_service.approve_submission(submission.id, admin.id)
    for submission in (first, first, second, second):
        await admin_service.generate_letter(submission.id, admin.id)
    first_team = await db.get(Team, first.team_id)

    await TeamService(db).delete_team(first_team.id, first_team.leader_id)
    letter = await admin_service.generate_letter(second.id, admin.id)

    now = utcnow()
    assert letter["letter_number"] == format_letter_number(5, now)
    assert await db.scalar(select(func.count(GeneratedLetter.id))) == 3


LEGACY_DOCUMENTS = """
CREATE TABLE submission_documents (
    id INTEGER PRIMARY KEY,
    submission_id INTEGER NOT NULL REFERENCES submissions (id) ON DELETE CASCADE,
    document_type VARCHAR(32),
    file_name VARCHAR(512) NOT NULL,
    original_name VARCHAR(255) NOT NULL,
    file_type VARCHAR(128),
    file_size INTEGER,
    file_url VARCHAR(1024) NOT NULL,
    uploaded_by VARCHAR(64),
    member_user_id VARCHAR(64),
    created_at DATETIME NOT NULL
)
"""
DOCUMENT_COLUMNS = (
    "id, submission_id, document_type, file_name, original_name, file_type, file_size, "
    "file_url, uploaded_by, member_user_id, created_at"
)


@pytest.mark.anyio
async def test_untyped_documents_are_hidden_from_admin(engine, db, admin_service, pending_submission):
    submission = await pending_submission()
    # databases from before document_type was required can still hold NULLs
    async with engine.begin() as conn:
        await conn.exec_driver_sql("ALTER TABLE submission_documents RENAME TO submission_documents_old")
        await conn.exec_driver_sql(LEGACY_DOCUMENTS)
        await conn.exec_driver_sql(
            f"INSERT INTO submission_documents ({DOCUMENT_COLUMNS}) "
            f"SELECT {DOCUMENT_COLUMNS} FROM submission_documents_old"
        )
        await conn.exec_driver_sql("DROP TABLE submission_documents_old")
        await conn.execute(
            text(
                "INSERT INTO submission_documents "
                "(submission_id, document_type, file_name, original_name, file_url, created_at) "
                "VALUES (:submission_id, NULL, 'submissions/legacy.pdf', 'legacy.pdf', "
                "'/files/submissions/legacy.pdf', '2025-01-06 08:00:00.000000')"
            ),
            {"submission_id": submission.id},
        )

    assert await db.scalar(text("SELECT count(*) FROM submission_documents")) == 2

    listed = await admin_service.list_submissions()
    detail = await admin_service.get_submission_detail(submission.id)

    for view in (listed[0], detail):
        assert [document["document_type"] for document in view["documents"]] == [DocumentType.KTP]
        assert "legacy.pdf" not in {document["original_name"] for document in view["documents"]}
