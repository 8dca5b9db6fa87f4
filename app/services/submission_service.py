"""Submission drafting, review hand-off and document attachment."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import (
    ACTIVE_SUBMISSION_STATUSES,
    ALLOWED_DOCUMENT_EXTENSIONS,
    DocumentType,
    InvitationStatus,
    SubmissionStatus,
)
from app.errors import (
    ActiveSubmissionExists,
    BadRequestError,
    DocumentNotFound,
    FileTooLarge,
    IncompleteSubmission,
    InvalidFileType,
    InvalidSubmissionStatus,
    NotTeamMember,
    StorageError,
    SubmissionNotDraft,
    SubmissionNotFound,
    TeamNotFinalized,
    TeamNotFound,
)
from app.models.generated_letter import GeneratedLetter
from app.models.response_letter import ResponseLetter
from app.models.submission import Submission
from app.models.submission_document import SubmissionDocument
from app.models.team import Team
from app.models.team_member import TeamMember
from app.services.storage import DocumentStorage, FilePayload, content_type_for, get_document_storage
from app.utils import as_dict, env_int

logger = logging.getLogger("submissions")


async def document_views(
    db: AsyncSession,
    submission_ids: Iterable[int],
) -> dict[int, list[dict[str, Any]]]:
    """Documents grouped by submission; rows without a document type are skipped."""
    ids = list(submission_ids)
    grouped: dict[int, list[dict[str, Any]]] = {submission_id: [] for submission_id in ids}
    if not ids:
        return grouped
    documents = (
        await db.execute(
            select(SubmissionDocument)
            .where(SubmissionDocument.submission_id.in_(ids))
            .order_by(SubmissionDocument.created_at, SubmissionDocument.id)
        )
    ).scalars()
    for document in documents:
        if document.document_type is None:
            logger.warning("Skipping document %s with no document type", document.id)
            continue
        grouped[document.submission_id].append(as_dict(document))
    return grouped


async def submission_views(
    db: AsyncSession,
    submissions: Iterable[Submission],
    *,
    include_letters: bool = False,
) -> list[dict[str, Any]]:
    submissions = list(submissions)
    ids = [submission.id for submission in submissions]
    documents = await document_views(db, ids)

    letters: dict[int, list[dict[str, Any]]] = {submission_id: [] for submission_id in ids}
    responses: dict[int, dict[str, Any]] = {}
    if include_letters and ids:
        for letter in (
            await db.execute(
                select(GeneratedLetter)
                .where(GeneratedLetter.submission_id.in_(ids))
                .order_by(GeneratedLetter.generated_at, GeneratedLetter.id)
            )
        ).scalars():
            letters[letter.submission_id].append(as_dict(letter))
        for response in (
            await db.execute(select(ResponseLetter).where(ResponseLetter.submission_id.in_(ids)))
        ).scalars():
            responses[response.submission_id] = as_dict(response)

    views = []
    for submission in submissions:
        view = as_dict(submission)
        view["documents"] = documents.get(submission.id, [])
        if include_letters:
            view["letters"] = letters.get(submission.id, [])
            view["response_letter"] = responses.get(submission.id)
        views.append(view)
    return views


class SubmissionService:
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

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    async def _get_submission(self, submission_id: int) -> Submission:
        submission = await self.db.get(Submission, submission_id)
        if submission is None:
            raise SubmissionNotFound("Pengajuan tidak ditemukan.")
        return submission

    async def _is_accepted_member(self, team_id: int, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        found = await self.db.scalar(
            select(TeamMember.id).where(
                TeamMember.team_id == team_id,
                TeamMember.user_id == user_id,
                TeamMember.invitation_status == InvitationStatus.ACCEPTED,
            )
        )
        return found is not None

    async def _require_member(self, team_id: int, user_id: str, message: Optional[str] = None) -> None:
        if not await self._is_accepted_member(team_id, user_id):
            raise NotTeamMember(message)

    @staticmethod
    def _require_draft(submission: Submission) -> None:
        if submission.status != SubmissionStatus.DRAFT:
            raise SubmissionNotDraft("Pengajuan sudah diajukan dan tidak dapat diubah.")

    async def _require_no_active(self, team_id: int, exclude_id: Optional[int] = None) -> None:
        stmt = select(Submission.id).where(
            Submission.team_id == team_id,
            Submission.status.in_(ACTIVE_SUBMISSION_STATUSES),
        )
        if exclude_id is not None:
            stmt = stmt.where(Submission.id != exclude_id)
        if await self.db.scalar(stmt.limit(1)) is not None:
            raise ActiveSubmissionExists()

    @staticmethod
    def _apply_fields(submission: Submission, fields: Optional[Mapping[str, Any]]) -> list[str]:
        changed = []
        for key, value in (fields or {}).items():
            if key not in Submission.EDITABLE_FIELDS:
                continue
            setattr(submission, key, value)
            changed.append(key)
        if submission.start_date and submission.end_date and submission.end_date < submission.start_date:
            raise BadRequestError("End date must not be before start date")
        return changed

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error("%s failed; rolled back", action, exc_info=True)
            raise

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    async def create_submission(
        self,
        team_id: int,
        user_id: str,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> Submission:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise TeamNotFound()
        if not team.is_fixed:
            raise TeamNotFinalized()
        await self._require_member(team.id, user_id)
        await self._require_no_active(team.id)

        submission = Submission(team_id=team.id, status=SubmissionStatus.DRAFT, status_history=[])
        self._apply_fields(submission, fields)
        submission.mark_draft()
        self.db.add(submission)
        await self._commit("create submission")
        logger.info("Submission %s created for team %s by %s", submission.id, team.id, user_id)
        return submission

    async def update_submission(self, submission_id: int, user_id: str, fields: Mapping[str, Any]) -> Submission:
        submission = await self._get_submission(submission_id)
        await self._require_member(submission.team_id, user_id)
        self._require_draft(submission)

        changed = self._apply_fields(submission, fields)
        await self._commit("update submission")
        logger.info("Submission %s updated by %s: %s", submission.id, user_id, ", ".join(changed) or "no changes")
        return submission

    async def submit_for_review(self, submission_id: int, user_id: str) -> Submission:
        submission = await self._get_submission(submission_id)
        await self._require_member(submission.team_id, user_id)
        self._require_draft(submission)
        if not (submission.company_name or "").strip() or not (submission.company_address or "").strip():
            raise IncompleteSubmission()

        submission.mark_submitted()
        await self._commit("submit submission")
        logger.info("Submission %s submitted for review by %s", submission.id, user_id)
        return submission

    async def reset_to_draft(self, submission_id: int, user_id: str) -> Submission:
        submission = await self._get_submission(submission_id)
        if submission.status != SubmissionStatus.DITOLAK:
            raise InvalidSubmissionStatus("Hanya pengajuan yang ditolak yang dapat diajukan ulang.")
        await self._require_member(submission.team_id, user_id)
        await self._require_no_active(submission.team_id, exclude_id=submission.id)

        submission.mark_draft()
        await self._commit("reset submission")
        logger.info("Submission %s reset to draft by %s", submission.id, user_id)
        return submission

    async def get_submission(self, submission_id: int, user_id: str) -> dict[str, Any]:
        submission = await self._get_submission(submission_id)
        await self._require_member(submission.team_id, user_id)
        views = await submission_views(self.db, [submission], include_letters=True)
        return views[0]

    async def get_my_submissions(self, user_id: str) -> list[dict[str, Any]]:
        team_ids = select(TeamMember.team_id).where(
            TeamMember.user_id == user_id,
            TeamMember.invitation_status == InvitationStatus.ACCEPTED,
        )
        submissions = (
            await self.db.execute(
                select(Submission)
                .where(Submission.team_id.in_(team_ids))
                .order_by(Submission.created_at.desc(), Submission.id.desc())
            )
        ).scalars().all()
        return await submission_views(self.db, submissions, include_letters=True)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    async def upload_document(
        self,
        submission_id: int,
        user_id: str,
        upload: FilePayload,
        document_type: DocumentType | str,
        member_user_id: Optional[str] = None,
    ) -> SubmissionDocument:
        submission = await self._get_submission(submission_id)
        await self._require_member(submission.team_id, user_id, "Unauthorized - not team member")
        owner_id = member_user_id or user_id
        if owner_id != user_id:
            await self._require_member(submission.team_id, owner_id, "User is not a member of this team")
        self._require_draft(submission)

        try:
            document_type = DocumentType(document_type)
        except ValueError as exc:
            raise BadRequestError(f"Unknown document type: {document_type}") from exc
        if not self.storage.validate_file_type(upload.file_name, ALLOWED_DOCUMENT_EXTENSIONS):
            raise InvalidFileType("Invalid file type. Only PDF, DOC and DOCX are allowed")
        if not self.storage.validate_file_size(upload.size, self.max_upload_mb):
            raise FileTooLarge(f"File size exceeds {self.max_upload_mb}MB limit")

        stored = await self.storage.upload(upload.content, upload.file_name, f"submissions/{submission.id}")
        document = SubmissionDocument(
            submission_id=submission.id,
            document_type=document_type,
            file_name=stored.key,
            original_name=upload.file_name,
            file_type=upload.content_type or content_type_for(upload.file_name),
            file_size=stored.size,
            file_url=stored.url,
            uploaded_by=user_id,
            member_user_id=owner_id,
        )
        self.db.add(document)
        try:
            await self._commit("record document")
        except Exception:
            await self._discard_blob(stored.key)
            raise
        logger.info(
            "Document %s (%s) uploaded to submission %s by %s",
            document.id,
            document_type.value,
            submission.id,
            user_id,
        )
        return document

    async def list_documents(self, submission_id: int, user_id: str) -> list[dict[str, Any]]:
        submission = await self._get_submission(submission_id)
        await self._require_member(submission.team_id, user_id, "Unauthorized - not team member")
        grouped = await document_views(self.db, [submission.id])
        return grouped[submission.id]

    async def delete_document(self, document_id: int, user_id: str) -> SubmissionDocument:
        document = await self.db.get(SubmissionDocument, document_id)
        if document is None:
            raise DocumentNotFound()
        submission = await self._get_submission(document.submission_id)
        await self._require_member(submission.team_id, user_id, "Unauthorized - not team member")
        self._require_draft(submission)

        await self.db.delete(document)
        await self._commit("delete document")
        await self._discard_blob(document.file_name)
        logger.info("Document %s removed from submission %s by %s", document_id, submission.id, user_id)
        return document

    async def _discard_blob(self, key: str) -> None:
        try:
            await self.storage.delete(key)
        except (StorageError, OSError):
            logger.warning("Could not delete stored object %s", key, exc_info=True)
