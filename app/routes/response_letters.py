from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity, get_current_identity, require_admin, require_student
from app.constants import Messages, ResponseLetterStatus
from app.database import get_db
from app.schemas import VerifyResponseLetter
from app.services import ResponseLetterService
from app.services.storage import FilePayload
from app.utils import as_dict, envelope

router = APIRouter(prefix="/api/response-letters", tags=["Response Letters"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_response_letter(
    submission_id: int = Form(..., gt=0),
    letter_status: str = Form(default=ResponseLetterStatus.APPROVED.value),
    file: UploadFile = File(...),
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    payload = await FilePayload.from_upload(file)
    letter = await ResponseLetterService(db).submit_response_letter(
        submission_id,
        identity.user_id,
        payload,
        letter_status,
    )
    return envelope(Messages.RESPONSE_LETTER_SUBMITTED, as_dict(letter))


@router.get("/my")
async def my_response_letter(
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    letter = await ResponseLetterService(db).get_my_response_letter(identity.user_id)
    return envelope(Messages.RESPONSE_LETTER_RETRIEVED, letter)


@router.get("/admin")
async def list_response_letters(
    status_filter: str = Query(default="all", alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    letters = await ResponseLetterService(db).list_response_letters(status_filter, limit=limit, offset=offset)
    return envelope(Messages.RESPONSE_LETTERS_RETRIEVED, letters)


@router.put("/admin/{letter_id}/verify")
async def verify_response_letter(
    letter_id: int,
    payload: VerifyResponseLetter,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    letter = await ResponseLetterService(db).verify_response_letter(letter_id, identity.user_id, payload.letter_status)
    return envelope(Messages.RESPONSE_LETTER_VERIFIED, as_dict(letter))


@router.delete("/admin/{letter_id}")
async def delete_response_letter(
    letter_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await ResponseLetterService(db).delete_response_letter(letter_id)
    return envelope(Messages.RESPONSE_LETTER_DELETED, {"id": letter_id})


@router.get("/{letter_id}")
async def get_response_letter(
    letter_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    letter = await ResponseLetterService(db).get_response_letter(letter_id, identity)
    return envelope(Messages.RESPONSE_LETTER_RETRIEVED, letter)
