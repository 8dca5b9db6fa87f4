"""Company reply letters: submitted by a team, verified by an admin."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity
from app.constants import (
    RESPONSE_LETTER_EXTENSIONS,
    InvitationStatus,
    ResponseLetterStatus,
    ResponseLetterTracking,
)
from app.errors import (
    BadRequestError,
    FileTooLarge,
    InvalidFileType,
    NotTeamMember,
    ResponseLetterAlreadyVerified,
    ResponseLetterExists,
    ResponseLetterNotFound,
    StorageError,
    SubmissionNotFound,
)
from app.models.response_letter import ResponseLetter
from app.models.submission import Submission
from app.models.team import Team
from app.models.team_member import TeamMember
from app.models.user import User
from app.services.storage import DocumentStorage, FilePayload, get_document_storage
from app.utils import as_dict, env_int, utcnow

logger = logging.getLogger("response_letters")

LIST_FILTERS = ("all", "approved", "rejected", "verified", "unverified")


def _parse_decision(value: ResponseLetterStatus | str) -> ResponseLetterStatus:
    try:
        return ResponseLetterStatus(str(getattr(value, "value", value)).strip().lower())
    except ValueError as exc:
        raise BadRequestError("Letter status must be 'approved' or 'rejected'") from exc


class ResponseLetterService:
    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[DocumentStorage] = None,
        *,
        max_upload_mb: Optional[int] = None,
    ) -> None:
        self.db = db
        self._storage = storage
        self.max_upload_mb = max_upload_mb or env_int("MAX_UPLOAD_SIZE_MB", 10, minimum=1)

    @property
    def storage(self) -> DocumentStorage:
        if self._storage is None:
            self._storage = get_document_storage()
        return self._storage

    async def _get_letter(self, letter_id: int) -> ResponseLetter:
        letter = await self.db.get(ResponseLetter, letter_id)
        if letter is None:
            raise ResponseLetterNotFound()
        return letter

    async def _is_accepted_member(self, team_id: int, user_id: str) -> bool:
        found = await self.db.scalar(
            select(TeamMember.id).where(
                TeamMember.team_id == team_id,
                TeamMember.user_id == user_id,
                TeamMember.invitation_status == InvitationStatus.ACCEPTED,
            )
        )
        return found is not None

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error("%s failed; rolled back", action, exc_info=True)
            raise

    async def _view(self, letter: ResponseLetter) -> dict[str, Any]:
        view = as_dict(letter)
        row = (
            await self.db.execute(
                select(Submission, Team, User)
                .join(Team, Team.id == Submission.team_id)
                .join(User, User.id == Team.leader_id)
                .where(Submission.id == letter.submission_id)
            )
        ).first()
        if row is not None:
            submission, team, leader = row
            member_count = await self.db.scalar(
                select(func.count(TeamMember.id)).where(
                    TeamMember.team_id == team.id,
                    TeamMember.invitation_status == InvitationStatus.ACCEPTED,
                )
            )
            view["submission"] = {
                "id": submission.id,
                "company_name": submission.company_name,
                "status": submission.status,
                "response_letter_status": submission.response_letter_status,
            }
            view["team"] = {
                "id": team.id,
                "code": team.code,
                "leader_name": leader.nama,
                "leader_nim": leader.nim,
                "member_count": member_count or 0,
            }
        return view

    # ------------------------------------------------------------------
    # Student side
    # ------------------------------------------------------------------
    async def submit_response_letter(
        self,
        submission_id: int,
        user_id: str,
        upload: FilePayload,
        letter_status: ResponseLetterStatus | str = ResponseLetterStatus.APPROVED,
    ) -> ResponseLetter:
        submission = await self.db.get(Submission, submission_id)
        if submission is None:
            raise SubmissionNotFound()
        if not await self._is_accepted_member(submission.team_id, user_id):
            raise NotTeamMember("Anda bukan anggota tim ini")

        existing = await self.db.scalar(
            select(ResponseLetter.id).where(ResponseLetter.submission_id == submission.id)
        )
        if existing is not None:
            raise ResponseLetterExists()

        decision = _parse_decision(letter_status)
        content_type = (upload.content_type or "").lower()
        if not self.storage.validate_file_type(upload.file_name, RESPONSE_LETTER_EXTENSIONS) or (
            content_type and "pdf" not in content_type
        ):
            raise InvalidFileType("Hanya file PDF yang diperbolehkan")
        if not self.storage.validate_file_size(upload.size, self.max_upload_mb):
            raise FileTooLarge(f"Ukuran file melebihi batas maksimal ({self.max_upload_mb}MB)")

        now = utcnow()
        stored = await self.storage.upload(
            upload.content,
            f"response-letter-{submission.id}.pdf",
            f"response-letters/{now.year}-{now.month:02d}",
        )
        letter = ResponseLetter(
            submission_id=submission.id,
            letter_status=decision,
            original_name=upload.file_name,
            file_name=stored.key,
            file_type=upload.content_type or "application/pdf",
            file_size=stored.size,
            file_url=stored.url,
            member_user_id=user_id,
            submitted_at=now,
        )
        self.db.add(letter)
        submission.response_letter_status = ResponseLetterTracking.SUBMITTED
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            await self._discard_blob(stored.key)
            raise ResponseLetterExists() from exc
        except Exception:
            await self.db.rollback()
            await self._discard_blob(stored.key)
            logger.error("Recording response letter for submission %s failed", submission_id, exc_info=True)
            raise
        logger.info("Response letter %s submitted for submission %s by %s", letter.id, submission_id, user_id)
        return letter

    async def get_my_response_letter(self, user_id: str) -> Optional[dict[str, Any]]:
        team_ids = select(TeamMember.team_id).where(
            TeamMember.user_id == user_id,
            TeamMember.invitation_status == InvitationStatus.ACCEPTED,
        )
        letter = await self.db.scalar(
            select(ResponseLetter)
            .join(Submission, Submission.id == ResponseLetter.submission_id)
            .where(Submission.team_id.in_(team_ids))
            .order_by(ResponseLetter.submitted_at.desc(), ResponseLetter.id.desc())
            .limit(1)
        )
        if letter is None:
            return None
        return await self._view(letter)

    async def get_response_letter(self, letter_id: int, identity: Identity) -> dict[str, Any]:
        letter = await self._get_letter(letter_id)
        if not identity.is_admin:
            submission = await self.db.get(Submission, letter.submission_id)
            if submission is None:
                raise SubmissionNotFound()
            if not await self._is_accepted_member(submission.team_id, identity.user_id):
                raise NotTeamMember("Access forbidden")
        return await self._view(letter)

    # ------------------------------------------------------------------
    # Admin side
    # ------------------------------------------------------------------
    async def list_response_letters(
        self,
        status: str = "all",
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        status = (status or "all").lower()
        if status not in LIST_FILTERS:
            raise BadRequestError(f"Unknown filter: {status}")

        stmt = select(ResponseLetter).order_by(ResponseLetter.submitted_at.desc(), ResponseLetter.id.desc())
        if status == "approved":
            stmt = stmt.where(ResponseLetter.letter_status == ResponseLetterStatus.APPROVED)
        elif status == "rejected":
            stmt = stmt.where(ResponseLetter.letter_status == ResponseLetterStatus.REJECTED)
        elif status == "verified":
            stmt = stmt.where(ResponseLetter.verified.is_(True))
        elif status == "unverified":
            stmt = stmt.where(ResponseLetter.verified.is_(False))
        stmt = stmt.limit(max(1, min(limit, 200))).offset(max(0, offset))

        letters = (await self.db.execute(stmt)).scalars().all()
        return [await self._view(letter) for letter in letters]

    async def verify_response_letter(
        self,
        letter_id: int,
        admin_id: str,
        decision: ResponseLetterStatus | str,
    ) -> ResponseLetter:
        letter = await self._get_letter(letter_id)
        if letter.verified:
            raise ResponseLetterAlreadyVerified()
        decision = _parse_decision(decision)

        letter.mark_verified(admin_id, decision)
        submission = await self.db.get(Submission, letter.submission_id)
        if submission is not None:
            submission.response_letter_status = ResponseLetterTracking.VERIFIED
        await self._commit("verify response letter")
        logger.info("Response letter %s verified by %s as %s", letter.id, admin_id, decision.value)
        return letter

    async def delete_response_letter(self, letter_id: int) -> None:
        letter = await self._get_letter(letter_id)
        key = letter.file_name
        submission = await self.db.get(Submission, letter.submission_id)

        await self._discard_blob(key)
        await self.db.delete(letter)
        if submission is not None:
            submission.response_letter_status = ResponseLetterTracking.PENDING
        await self._commit("delete response letter")
        logger.info("Response letter %s deleted", letter_id)

    async def _discard_blob(self, key: Optional[str]) -> None:
        if not key:
            return
        try:
            await self.storage.delete(key)
        except (StorageError, OSError):
            # the record goes regardless
            logger.warning("Could not delete stored response letter %s", key, exc_info=True)
