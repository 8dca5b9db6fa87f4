from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity, require_admin
from app.constants import Messages, SubmissionStatus
from app.database import get_db
from app.schemas import ApproveRequest, GenerateLetterRequest, RejectRequest, StatusUpdate
from app.services import AdminService, LetterService
from app.utils import as_dict, envelope

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/submissions")
async def list_submissions(
    status: Optional[SubmissionStatus] = Query(default=None),
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    submissions = await AdminService(db).list_submissions(status)
    return envelope(Messages.SUBMISSIONS_RETRIEVED, submissions)


@router.get("/submissions/status/{status}")
async def list_submissions_by_status(
    status: SubmissionStatus,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    submissions = await AdminService(db).list_submissions(status)
    return envelope(Messages.SUBMISSIONS_RETRIEVED, submissions)


@router.get("/submissions/{submission_id}")
async def submission_detail(
    submission_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    submission = await AdminService(db).get_submission_detail(submission_id)
    return envelope(Messages.SUBMISSION_RETRIEVED, submission)


@router.post("/submissions/{submission_id}/approve")
async def approve_submission(
    submission_id: int,
    payload: Optional[ApproveRequest] = Body(default=None),
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = payload or ApproveRequest()
    result = await AdminService(db).approve_submission(
        submission_id,
        identity.user_id,
        auto_generate_letter=payload.auto_generate_letter,
        letter_format=payload.letter_format,
    )
    return envelope(Messages.SUBMISSION_APPROVED, result)


@router.post("/submissions/{submission_id}/reject")
async def reject_submission(
    submission_id: int,
    payload: RejectRequest,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    submission = await AdminService(db).reject_submission(submission_id, identity.user_id, payload.reason)
    return envelope(Messages.SUBMISSION_REJECTED, as_dict(submission))


@router.put("/submissions/{submission_id}/status")
async def update_submission_status(
    submission_id: int,
    payload: StatusUpdate,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await AdminService(db).update_submission_status(
        submission_id,
        identity.user_id,
        payload.status,
        payload.rejection_reason,
        auto_generate_letter=payload.auto_generate_letter,
        letter_format=payload.letter_format,
    )
    return envelope(Messages.STATUS_UPDATED, result)


@router.post("/submissions/{submission_id}/generate-letter")
async def generate_letter(
    submission_id: int,
    payload: Optional[GenerateLetterRequest] = Body(default=None),
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = payload or GenerateLetterRequest()
    letter = await AdminService(db).generate_letter(submission_id, identity.user_id, payload.format)
    return envelope(Messages.LETTER_GENERATED, letter)


@router.get("/submissions/{submission_id}/letters")
async def list_letters(
    submission_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    letters = await LetterService(db).list_letters(submission_id)
    return envelope(Messages.LETTERS_RETRIEVED, [as_dict(letter) for letter in letters])


@router.get("/statistics")
async def statistics(
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stats = await AdminService(db).get_statistics()
    return envelope(Messages.STATISTICS_RETRIEVED, stats)
