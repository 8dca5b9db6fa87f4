from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import InvitationStatus, LetterFormat, SubmissionStatus
from app.errors import BadRequestError, InvalidSubmissionStatus, RejectionReasonRequired, SubmissionNotFound
from app.models.submission import Submission
from app.models.team import Team
from app.models.team_member import TeamMember
from app.models.user import User
from app.services.letter_service import LetterService
from app.services.submission_service import submission_views
from app.utils import as_dict

logger = logging.getLogger("admin")

_APPROVE_ALIASES = {"APPROVED", SubmissionStatus.DITERIMA.value}
_REJECT_ALIASES = {"REJECTED", SubmissionStatus.DITOLAK.value}


class AdminService:
    """Review queue for admin-capable staff (ADMIN, KAPRODI, WAKIL_DEKAN)."""

    def __init__(self, db: AsyncSession, letters: Optional[LetterService] = None) -> None:
        self.db = db
        self.letters = letters or LetterService(db)

    async def _get_submission(self, submission_id: int) -> Submission:
        submission = await self.db.get(Submission, submission_id)
        if submission is None:
            raise SubmissionNotFound()
        return submission

    @staticmethod
    def _require_pending(submission: Submission, action: str) -> None:
        if submission.status != SubmissionStatus.MENUNGGU:
            raise InvalidSubmissionStatus(f"Can only {action} pending submissions")

    async def _team_views(self, team_ids: set[int]) -> dict[int, dict[str, Any]]:
        if not team_ids:
            return {}
        teams = {
            team.id: {"id": team.id, "code": team.code, "status": team.status, "leader_id": team.leader_id, "members": []}
            for team in (await self.db.execute(select(Team).where(Team.id.in_(team_ids)))).scalars()
        }
        rows = (
            await self.db.execute(
                select(TeamMember, User)
                .join(User, User.id == TeamMember.user_id)
                .where(
                    TeamMember.team_id.in_(team_ids),
                    TeamMember.invitation_status == InvitationStatus.ACCEPTED,
                )
                .order_by(TeamMember.id)
            )
        ).all()
        for member, user in rows:
            teams[member.team_id]["members"].append(
                {"user_id": user.id, "name": user.nama, "nim": user.nim, "role": member.role}
            )
        return teams

    async def _views(self, submissions: list[Submission]) -> list[dict[str, Any]]:
        views = await submission_views(self.db, submissions, include_letters=True)
        teams = await self._team_views({submission.team_id for submission in submissions})
        for view in views:
            view["team"] = teams.get(view["team_id"])
        return views

    async def list_submissions(self, status: Optional[SubmissionStatus | str] = None) -> list[dict[str, Any]]:
        stmt = select(Submission).order_by(Submission.submitted_at.desc(), Submission.id.desc())
        if status:
            try:
                stmt = stmt.where(Submission.status == SubmissionStatus(status))
            except ValueError as exc:
                raise BadRequestError(f"Unknown submission status: {status}") from exc
        submissions = list((await self.db.execute(stmt)).scalars())
        return await self._views(submissions)

    async def get_submission_detail(self, submission_id: int) -> dict[str, Any]:
        submission = await self._get_submission(submission_id)
        views = await self._views([submission])
        return views[0]

    async def approve_submission(
        self,
        submission_id: int,
        admin_id: str,
        *,
        auto_generate_letter: bool = False,
        letter_format: LetterFormat | str = LetterFormat.PDF,
    ) -> dict[str, Any]:
        submission = await self._get_submission(submission_id)
        self._require_pending(submission, "approve")

        submission.mark_approved(admin_id)
        await self.db.commit()
        logger.info("Submission %s approved by %s", submission.id, admin_id)
        approved = as_dict(submission)

        letter = None
        if auto_generate_letter:
            letter = await self.letters.generate_letter(submission_id, admin_id, letter_format)
        return {"submission": approved, "letter": as_dict(letter) if letter else None}

    async def reject_submission(self, submission_id: int, admin_id: str, reason: Optional[str]) -> Submission:
        submission = await self._get_submission(submission_id)
        self._require_pending(submission, "reject")
        reason = (reason or "").strip()
        if not reason:
            raise RejectionReasonRequired()

        submission.mark_rejected(reason)
        submission.approved_by = admin_id
        await self.db.commit()
        logger.info("Submission %s rejected by %s", submission.id, admin_id)
        return submission

    async def update_submission_status(
        self,
        submission_id: int,
        admin_id: str,
        status: str,
        rejection_reason: Optional[str] = None,
        *,
        auto_generate_letter: bool = False,
        letter_format: LetterFormat | str = LetterFormat.PDF,
    ) -> dict[str, Any]:
        normalized = (status or "").strip().upper()
        if normalized in _APPROVE_ALIASES:
            return await self.approve_submission(
                submission_id,
                admin_id,
                auto_generate_letter=auto_generate_letter,
                letter_format=letter_format,
            )
        if normalized in _REJECT_ALIASES:
            submission = await self.reject_submission(submission_id, admin_id, rejection_reason)
            return {"submission": as_dict(submission), "letter": None}
        raise BadRequestError("Status must be APPROVED or REJECTED")

    async def generate_letter(
        self,
        submission_id: int,
        admin_id: str,
        fmt: LetterFormat | str = LetterFormat.PDF,
    ) -> dict[str, Any]:
        letter = await self.letters.generate_letter(submission_id, admin_id, fmt)
        return as_dict(letter)

    async def get_statistics(self) -> dict[str, int]:
        counts = dict(
            (await self.db.execute(select(Submission.status, func.count(Submission.id)).group_by(Submission.status))).all()
        )
        return {
            "total": sum(counts.values()),
            "draft": counts.get(SubmissionStatus.DRAFT, 0),
            "pending": counts.get(SubmissionStatus.MENUNGGU, 0),
            "approved": counts.get(SubmissionStatus.DITERIMA, 0),
            "rejected": counts.get(SubmissionStatus.DITOLAK, 0),
        }
