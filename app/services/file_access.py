"""Authorization for raw blob downloads.

A storage key is only served when a database row points at it: submission
documents, generated letters and response letters belong to a team; templates
are public while active. Admins may read anything that is recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity
from app.constants import InvitationStatus
from app.errors import DocumentNotFound, NotTeamMember, StorageError
from app.models.generated_letter import GeneratedLetter
from app.models.response_letter import ResponseLetter
from app.models.submission import Submission
from app.models.submission_document import SubmissionDocument
from app.models.team_member import TeamMember
from app.models.template import Template
from app.services.storage import DocumentStorage, content_type_for, get_document_storage

logger = logging.getLogger("files")


@dataclass
class StoredFile:
    key: str
    file_name: str
    content_type: str
    content: bytes


class FileAccessService:
    def __init__(self, db: AsyncSession, storage: Optional[DocumentStorage] = None) -> None:
        self.db = db
        self._storage = storage

    @property
    def storage(self) -> DocumentStorage:
        if self._storage is None:
            self._storage = get_document_storage()
        return self._storage

    async def _owning_submission(self, key: str) -> Optional[tuple[int, str]]:
        """``(submission_id, display name)`` of the team-owned row stored under ``key``."""
        for model in (SubmissionDocument, ResponseLetter):
            row = (
                await self.db.execute(
                    select(model.submission_id, model.original_name).where(model.file_name == key).limit(1)
                )
            ).first()
            if row is not None:
                return row[0], row[1]
        submission_id = await self.db.scalar(
            select(GeneratedLetter.submission_id).where(GeneratedLetter.file_name == key).limit(1)
        )
        if submission_id is not None:
            return submission_id, key.rsplit("/", 1)[-1]
        return None

    async def _is_accepted_member(self, submission_id: int, user_id: str) -> bool:
        found = await self.db.scalar(
            select(TeamMember.id)
            .join(Submission, Submission.team_id == TeamMember.team_id)
            .where(
                Submission.id == submission_id,
                TeamMember.user_id == user_id,
                TeamMember.invitation_status == InvitationStatus.ACCEPTED,
            )
        )
        return found is not None

    async def read_file(self, key: str, identity: Identity) -> StoredFile:
        owner = await self._owning_submission(key)
        if owner is not None:
            submission_id, display = owner
            if not identity.is_admin and not await self._is_accepted_member(submission_id, identity.user_id):
                logger.warning("User %s denied file %s of submission %s", identity.user_id, key, submission_id)
                raise NotTeamMember("Access forbidden")
            content_type = content_type_for(display)
        else:
            template = await self.db.scalar(select(Template).where(Template.file_name == key).limit(1))
            if template is None or not (template.is_active or identity.is_admin):
                raise DocumentNotFound()
            display = template.original_name
            content_type = template.file_type or content_type_for(display)

        try:
            content = await self.storage.get(key)
        except StorageError as exc:
            raise DocumentNotFound() from exc
        return StoredFile(key=key, file_name=display, content_type=content_type, content=content)
