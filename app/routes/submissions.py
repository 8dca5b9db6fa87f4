from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity, require_student
from app.constants import DocumentType, Messages
from app.database import get_db
from app.schemas import SubmissionCreate, SubmissionUpdate
from app.services import SubmissionService
from app.services.storage import FilePayload
from app.utils import as_dict, envelope

router = APIRouter(prefix="/api/submissions", tags=["Submissions"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_submission(
    payload: SubmissionCreate,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    fields = payload.changes()
    fields.pop("team_id", None)
    submission = await SubmissionService(db).create_submission(payload.team_id, identity.user_id, fields)
    return envelope(Messages.SUBMISSION_CREATED, as_dict(submission))


@router.get("/my-submissions")
async def my_submissions(
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    submissions = await SubmissionService(db).get_my_submissions(identity.user_id)
    return envelope(Messages.SUBMISSIONS_RETRIEVED, submissions)


@router.delete("/documents/{document_id}")
async def delete_document(
    document_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    await SubmissionService(db).delete_document(document_id, identity.user_id)
    return envelope(Messages.DOCUMENT_DELETED, {"id": document_id})


@router.get("/{submission_id}")
async def get_submission(
    submission_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    submission = await SubmissionService(db).get_submission(submission_id, identity.user_id)
    return envelope(Messages.SUBMISSION_RETRIEVED, submission)


@router.patch("/{submission_id}")
async def update_submission(
    submission_id: int,
    payload: SubmissionUpdate,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    submission = await SubmissionService(db).update_submission(submission_id, identity.user_id, payload.changes())
    return envelope(Messages.SUBMISSION_UPDATED, as_dict(submission))


@router.post("/{submission_id}/submit")
async def submit_for_review(
    submission_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    submission = await SubmissionService(db).submit_for_review(submission_id, identity.user_id)
    return envelope(Messages.SUBMISSION_SUBMITTED, as_dict(submission))


@router.post("/{submission_id}/reset")
async def reset_to_draft(
    submission_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    submission = await SubmissionService(db).reset_to_draft(submission_id, identity.user_id)
    return envelope(Messages.SUBMISSION_RESET, as_dict(submission))


@router.post("/{submission_id}/documents", status_code=status.HTTP_201_CREATED)
async def upload_document(
    submission_id: int,
    document_type: DocumentType = Form(...),
    member_user_id: Optional[str] = Form(default=None),
    file: UploadFile = File(...),
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    payload = await FilePayload.from_upload(file)
    document = await SubmissionService(db).upload_document(
        submission_id,
        identity.user_id,
        payload,
        document_type,
        member_user_id=member_user_id,
    )
    return envelope(Messages.DOCUMENT_UPLOADED, as_dict(document))


@router.get("/{submission_id}/documents")
async def list_documents(
    submission_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    documents = await SubmissionService(db).list_documents(submission_id, identity.user_id)
    return envelope(Messages.DOCUMENTS_RETRIEVED, documents)
