"""Introduction letters for approved submissions.

Letter numbers look like ``0007/KP/FT/03/2026``: the month's sequence number,
a fixed institution segment, then month and year. The sequence is derived
from the highest number already issued that month and checked before insert; the
unique constraint on ``letter_number`` settles any race that slips through.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import InvitationStatus, LetterFormat, MemberRole, SubmissionStatus
from app.errors import (
    BadRequestError,
    InvalidSubmissionStatus,
    LetterNumberExhausted,
    StorageError,
    SubmissionNotFound,
)
from app.models.generated_letter import GeneratedLetter
from app.models.submission import Submission
from app.models.team_member import TeamMember
from app.models.user import User
from app.services.letter_renderer import LetterData, LetterMember, LetterRenderer
from app.services.storage import DocumentStorage, get_document_storage
from app.utils import env_int, utcnow

logger = logging.getLogger("letters")

LETTER_SERIES = "KP/FT"
LETTERS_FOLDER = "letters"
SEQUENCE_WIDTH = 4


def letter_suffix(at: datetime) -> str:
    return f"/{LETTER_SERIES}/{at.month:02d}/{at.year}"


def format_letter_number(sequence: int, at: datetime) -> str:
    return f"{sequence:0{SEQUENCE_WIDTH}d}{letter_suffix(at)}"


class LetterService:
    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[DocumentStorage] = None,
        renderer: Optional[LetterRenderer] = None,
        *,
        max_attempts: Optional[int] = None,
    ) -> None:
        self.db = db
        self._storage = storage
        self.renderer = renderer or LetterRenderer()
        self.max_attempts = max_attempts or env_int("LETTER_NUMBER_MAX_ATTEMPTS", 5, minimum=1)

    @property
    def storage(self) -> DocumentStorage:
        if self._storage is None:
            self._storage = get_document_storage()
        return self._storage

    async def highest_sequence(self, at: datetime) -> int:
        """Largest sequence issued in ``at``'s month; deleted letters leave gaps."""
        prefix = await self.db.scalar(
            select(func.max(func.substr(GeneratedLetter.letter_number, 1, SEQUENCE_WIDTH))).where(
                GeneratedLetter.letter_number.like(f"%{letter_suffix(at)}")
            )
        )
        try:
            return int(prefix) if prefix else 0
        except ValueError:
            logger.warning("Ignoring malformed letter number prefix %r", prefix)
            return 0

    async def next_letter_number(self, at: datetime, offset: int = 0) -> str:
        return format_letter_number(await self.highest_sequence(at) + 1 + offset, at)

    async def _number_taken(self, number: str) -> bool:
        found = await self.db.scalar(select(GeneratedLetter.id).where(GeneratedLetter.letter_number == number))
        return found is not None

    async def _letter_data(self, submission: Submission, at: datetime) -> LetterData:
        rows = (
            await self.db.execute(
                select(TeamMember, User)
                .join(User, User.id == TeamMember.user_id)
                .where(
                    TeamMember.team_id == submission.team_id,
                    TeamMember.invitation_status == InvitationStatus.ACCEPTED,
                )
                .order_by(TeamMember.id)
            )
        ).all()
        # leader first
        rows.sort(key=lambda row: row[0].role != MemberRole.KETUA)
        return LetterData(
            company_name=submission.company_name or "-",
            company_address=submission.company_address or "-",
            issued_on=at.date(),
            letter_purpose=submission.letter_purpose,
            company_supervisor=submission.company_supervisor,
            position=submission.position,
            division=submission.division,
            start_date=submission.start_date,
            end_date=submission.end_date,
            members=[LetterMember(name=user.nama or user.id, nim=user.nim) for _, user in rows],
        )

    async def generate_letter(
        self,
        submission_id: int,
        admin_id: str,
        fmt: LetterFormat | str = LetterFormat.PDF,
    ) -> GeneratedLetter:
        try:
            fmt = LetterFormat(fmt)
        except ValueError as exc:
            raise BadRequestError(f"Unsupported letter format: {fmt}") from exc

        submission = await self.db.get(Submission, submission_id)
        if submission is None:
            raise SubmissionNotFound()
        if submission.status != SubmissionStatus.DITERIMA:
            raise InvalidSubmissionStatus("Can only generate letter for approved submissions")

        # rollbacks below expire the instance; keep plain values
        submission_id = submission.id
        now = utcnow()
        data = await self._letter_data(submission, now)

        for attempt in range(self.max_attempts):
            number = await self.next_letter_number(now, offset=attempt)
            if await self._number_taken(number):
                continue

            payload = await asyncio.to_thread(self.renderer.render_letter, data, number, fmt)
            file_name = f"surat-pengantar-{submission_id}.{fmt.value}"
            stored = await self.storage.upload(payload, file_name, LETTERS_FOLDER)

            letter = GeneratedLetter(
                submission_id=submission_id,
                letter_number=number,
                file_name=stored.key,
                file_url=stored.url,
                file_type=fmt,
                generated_by=admin_id,
                generated_at=now,
            )
            self.db.add(letter)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning("Letter number %s was taken concurrently; retrying", number)
                await self._discard_blob(stored.key)
                continue

            logger.info("Letter %s generated for submission %s by %s", number, submission_id, admin_id)
            return letter

        logger.error("No free letter number for submission %s after %d attempts", submission_id, self.max_attempts)
        raise LetterNumberExhausted()

    async def list_letters(self, submission_id: int) -> list[GeneratedLetter]:
        return list(
            (
                await self.db.execute(
                    select(GeneratedLetter)
                    .where(GeneratedLetter.submission_id == submission_id)
                    .order_by(GeneratedLetter.generated_at.desc(), GeneratedLetter.id.desc())
                )
            ).scalars()
        )

    async def _discard_blob(self, key: str) -> None:
        try:
            await self.storage.delete(key)
        except (StorageError, OSError):
            logger.warning("Could not delete stored letter %s", key, exc_info=True)
