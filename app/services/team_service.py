"""Team formation: creation, invitations, join requests, leave, finalize.

A ``TeamMember`` row doubles as the invitation: it is created PENDING and
flips to ACCEPTED or REJECTED exactly once. Two invariants hold after every
operation here:

* a user holds at most one ACCEPTED membership across all teams;
* every team has exactly one KETUA row, owned by ``Team.leader_id`` and ACCEPTED.

Each public method ends in a single commit; any failure rolls the whole
operation back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import InvitationStatus, MemberRole, TeamStatus, is_student
from app.errors import (
    AlreadyHasTeam,
    AlreadyMember,
    AlreadyMemberElsewhere,
    CannotJoinOwnTeam,
    CannotLeaveAsLeader,
    CannotRemoveLeader,
    ConflictError,
    DeleteVerificationFailed,
    DuplicateInvitation,
    InvitationNotFound,
    InvitationNotPending,
    MemberNotFound,
    NotAStudent,
    NotInvitationParticipant,
    NotTeamLeader,
    NotTeamMember,
    TeamAlreadyFinalized,
    TeamFull,
    TeamNotFound,
    TeamNotReadyToFinalize,
    UserNotFound,
)
from app.models.generated_letter import GeneratedLetter
from app.models.response_letter import ResponseLetter
from app.models.submission import Submission
from app.models.submission_document import SubmissionDocument
from app.models.team import Team
from app.models.team_member import TeamMember
from app.models.user import User
from app.utils import env_int, generate_team_code, utcnow

logger = logging.getLogger("teams")

CODE_ATTEMPTS = 10


@dataclass
class TeamDeletion:
    team_id: int
    members_affected: int
    submissions_affected: int = 0


class TeamService:
    def __init__(self, db: AsyncSession, *, max_members: Optional[int] = None) -> None:
        self.db = db
        self.max_members = max_members or env_int("TEAM_MAX_MEMBERS", 3, minimum=2)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    async def _get_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def _get_team(self, team_id: int) -> Team:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise TeamNotFound()
        return team

    async def _find_target_user(self, identifier: str) -> User:
        """Resolve an invitee by NIM, falling back to the user id."""
        identifier = (identifier or "").strip()
        if not identifier:
            raise UserNotFound("Mahasiswa with this NIM not found")
        user = await self.db.scalar(select(User).where(User.nim == identifier).limit(1))
        if user is None:
            user = await self.db.get(User, identifier)
        if user is None:
            raise UserNotFound("Mahasiswa with this NIM not found")
        return user

    async def _membership(self, team_id: int, user_id: str) -> Optional[TeamMember]:
        return await self.db.scalar(
            select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        )

    async def _accepted_elsewhere(
        self,
        user_id: str,
        exclude_team_id: Optional[int] = None,
        *,
        members_only: bool = False,
    ) -> Optional[TeamMember]:
        stmt = select(TeamMember).where(
            TeamMember.user_id == user_id,
            TeamMember.invitation_status == InvitationStatus.ACCEPTED,
        )
        if exclude_team_id is not None:
            stmt = stmt.where(TeamMember.team_id != exclude_team_id)
        if members_only:
            stmt = stmt.where(TeamMember.role == MemberRole.ANGGOTA)
        return await self.db.scalar(stmt.limit(1))

    async def _accepted_count(self, team_id: int) -> int:
        return (
            await self.db.scalar(
                select(func.count(TeamMember.id)).where(
                    TeamMember.team_id == team_id,
                    TeamMember.invitation_status == InvitationStatus.ACCEPTED,
                )
            )
        ) or 0

    async def _unique_code(self) -> str:
        for _ in range(CODE_ATTEMPTS):
            code = generate_team_code()
            taken = await self.db.scalar(select(Team.id).where(Team.code == code))
            if taken is None:
                return code
        raise ConflictError("Could not allocate a unique team code")

    @staticmethod
    def _require_leader(team: Team, user_id: str, message: Optional[str] = None) -> None:
        if team.leader_id != user_id:
            raise NotTeamLeader(message)

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------
    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning("%s hit a constraint violation; rolled back", action)
            raise ConflictError("Conflicting team membership change, please retry") from exc
        except Exception:
            await self.db.rollback()
            logger.error("%s failed; rolled back", action, exc_info=True)
            raise

    async def _delete_member_verified(self, member: TeamMember, action: str) -> None:
        member_id = member.id
        await self.db.delete(member)
        await self._commit(action)

        # read back by primary key; a surviving row is a consistency failure
        survivor = await self.db.scalar(select(TeamMember.id).where(TeamMember.id == member_id))
        if survivor is not None:
            logger.error("%s: member %s still exists after delete", action, member_id)
            raise DeleteVerificationFailed(f"Failed to {action} - please try again")

    async def _purge_team(self, team_id: int) -> TeamDeletion:
        """Delete a team and everything it owns, without committing."""
        submission_ids = select(Submission.id).where(Submission.team_id == team_id)
        members_affected = await self.db.scalar(
            select(func.count(TeamMember.id)).where(TeamMember.team_id == team_id)
        ) or 0
        submissions_affected = await self.db.scalar(
            select(func.count(Submission.id)).where(Submission.team_id == team_id)
        ) or 0

        await self.db.execute(
            delete(SubmissionDocument).where(SubmissionDocument.submission_id.in_(submission_ids))
        )
        await self.db.execute(delete(GeneratedLetter).where(GeneratedLetter.submission_id.in_(submission_ids)))
        await self.db.execute(delete(ResponseLetter).where(ResponseLetter.submission_id.in_(submission_ids)))
        await self.db.execute(delete(Submission).where(Submission.team_id == team_id))
        await self.db.execute(delete(TeamMember).where(TeamMember.team_id == team_id))
        await self.db.execute(delete(Team).where(Team.id == team_id))
        return TeamDeletion(
            team_id=team_id,
            members_affected=members_affected,
            submissions_affected=submissions_affected,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    async def _member_views(self, team_id: int) -> list[dict[str, Any]]:
        rows = (
            await self.db.execute(
                select(TeamMember, User)
                .join(User, User.id == TeamMember.user_id)
                .where(TeamMember.team_id == team_id)
            )
        ).all()
        views = [
            {
                "id": member.id,
                "team_id": member.team_id,
                "user_id": member.user_id,
                "role": member.role,
                "status": member.invitation_status,
                "invited_by": member.invited_by,
                "invited_at": member.invited_at,
                "responded_at": member.responded_at,
                "user": {"id": user.id, "name": user.nama, "nim": user.nim, "email": user.email},
            }
            for member, user in rows
        ]
        # ACCEPTED first, then most recently invited
        views.sort(key=lambda view: view["invited_at"] or datetime.min, reverse=True)
        views.sort(key=lambda view: view["status"] != InvitationStatus.ACCEPTED)
        return views

    async def _team_view(self, team: Team) -> dict[str, Any]:
        return {
            "id": team.id,
            "code": team.code,
            "leader_id": team.leader_id,
            "status": team.status,
            "created_at": team.created_at,
            "members": await self._member_views(team.id),
        }

    async def get_team_members(self, team_id: int) -> list[dict[str, Any]]:
        await self._get_team(team_id)
        return await self._member_views(team_id)

    async def get_my_teams(self, user_id: str) -> list[dict[str, Any]]:
        teams = (
            await self.db.execute(
                select(Team)
                .join(TeamMember, TeamMember.team_id == Team.id)
                .where(
                    TeamMember.user_id == user_id,
                    TeamMember.invitation_status == InvitationStatus.ACCEPTED,
                )
                .order_by(Team.id)
            )
        ).scalars().all()
        views = []
        for team in teams:
            view = await self._team_view(team)
            view["is_leader"] = team.leader_id == user_id
            views.append(view)
        return views

    async def get_my_invitations(self, user_id: str) -> list[dict[str, Any]]:
        """Every invitation addressed to ``user_id`` (any status), newest first."""
        rows = (
            await self.db.execute(
                select(TeamMember, Team)
                .join(Team, Team.id == TeamMember.team_id)
                .where(TeamMember.user_id == user_id, TeamMember.role != MemberRole.KETUA)
                .order_by(TeamMember.invited_at.desc(), TeamMember.id.desc())
            )
        ).all()

        inviter_ids = {member.invited_by for member, _ in rows if member.invited_by}
        inviters: dict[str, User] = {}
        if inviter_ids:
            found = (await self.db.execute(select(User).where(User.id.in_(inviter_ids)))).scalars()
            inviters = {user.id: user for user in found}

        invitations = []
        for member, team in rows:
            inviter = inviters.get(member.invited_by)
            invitations.append(
                {
                    "id": member.id,
                    "team_id": team.id,
                    "team_code": team.code,
                    "team_status": team.status,
                    "status": member.invitation_status,
                    "invited_at": member.invited_at,
                    "responded_at": member.responded_at,
                    "invited_by": member.invited_by,
                    "inviter_name": inviter.nama if inviter else None,
                    "is_join_request": member.invited_by == member.user_id,
                }
            )
        return invitations

    async def get_team(self, team_id: int) -> dict[str, Any]:
        return await self._team_view(await self._get_team(team_id))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def create_team(self, leader_id: str) -> Team:
        user = await self._get_user(leader_id)
        if not is_student(user.role):
            raise NotAStudent("Only students (mahasiswa) can create teams")

        led = await self.db.scalar(select(Team.id).where(Team.leader_id == leader_id).limit(1))
        if led is not None:
            raise AlreadyHasTeam()
        if await self._accepted_elsewhere(leader_id) is not None:
            raise AlreadyMemberElsewhere(
                "You are already a member of another team. Each student can only join one team"
            )

        team = Team(code=await self._unique_code(), leader_id=leader_id, status=TeamStatus.PENDING)
        self.db.add(team)
        try:
            await self.db.flush()  # populate team.id
            self.db.add(
                TeamMember(
                    team_id=team.id,
                    user_id=leader_id,
                    role=MemberRole.KETUA,
                    invitation_status=InvitationStatus.ACCEPTED,
                    invited_by=leader_id,
                    responded_at=utcnow(),
                )
            )
        except Exception:
            await self.db.rollback()
            logger.error("Team creation for %s failed; rolled back", leader_id, exc_info=True)
            raise
        await self._commit("create team")
        logger.info("Team %s (%s) created by %s", team.id, team.code, leader_id)
        return team

    async def invite_member(self, team_id: int, leader_id: str, target_identifier: str) -> TeamMember:
        team = await self._get_team(team_id)
        self._require_leader(team, leader_id, "Only team leader can invite members")
        if team.is_fixed:
            raise TeamAlreadyFinalized("Cannot invite members to a finalized team")

        target = await self._find_target_user(target_identifier)
        if not is_student(target.role):
            raise NotAStudent("Only students (mahasiswa) can be invited")

        existing = await self._membership(team.id, target.id)
        if existing is not None:
            if existing.invitation_status == InvitationStatus.PENDING:
                raise DuplicateInvitation()
            if existing.invitation_status == InvitationStatus.ACCEPTED:
                raise AlreadyMember()
            # REJECTED: replace with a fresh invitation
            await self.db.delete(existing)
            await self.db.flush()
            logger.info("Replacing rejected invitation %s for %s in team %s", existing.id, target.id, team.id)

        member = TeamMember(
            team_id=team.id,
            user_id=target.id,
            role=MemberRole.ANGGOTA,
            invitation_status=InvitationStatus.PENDING,
            invited_by=leader_id,
        )
        self.db.add(member)
        await self._commit("invite member")
        logger.info("Team %s invited %s (member %s)", team.id, target.id, member.id)
        return member

    async def respond_to_invitation(self, member_id: int, responder_id: str, accept: bool) -> TeamMember:
        member = await self.db.get(TeamMember, member_id)
        if member is None or member.invitation_status != InvitationStatus.PENDING:
            raise InvitationNotFound()
        team = await self._get_team(member.team_id)

        is_invitee = member.user_id == responder_id
        is_leader = team.leader_id == responder_id
        if not (is_invitee or is_leader):
            logger.warning("User %s tried to answer invitation %s", responder_id, member_id)
            raise NotInvitationParticipant()

        if accept:
            if await self._accepted_elsewhere(member.user_id, team.id, members_only=True) is not None:
                raise AlreadyMemberElsewhere()

            if is_invitee:
                led_team_ids = (
                    await self.db.scalars(
                        select(Team.id).where(Team.leader_id == member.user_id, Team.id != team.id)
                    )
                ).all()
                for old_team_id in led_team_ids:
                    deletion = await self._purge_team(old_team_id)
                    logger.info(
                        "Auto-deleted team %s led by %s (%d members) on accepting team %s",
                        old_team_id,
                        member.user_id,
                        deletion.members_affected,
                        team.id,
                    )
            elif await self._accepted_elsewhere(member.user_id, team.id) is not None:
                # a leader confirming a join request never deletes the requester's own team
                raise AlreadyMemberElsewhere(
                    "Anda masih menjadi anggota tim lain. Silakan keluar atau hapus tim lama terlebih dahulu"
                )
        member.mark_responded(accept)
        await self._commit("respond to invitation")
        logger.info(
            "Invitation %s %s by %s",
            member.id,
            member.invitation_status.value,
            "invitee" if is_invitee else "leader",
        )
        return member

    async def join_team(self, team_code: str, user_id: str) -> TeamMember:
        code = (team_code or "").strip().upper()
        team = await self.db.scalar(select(Team).where(Team.code == code))
        if team is None:
            raise TeamNotFound("Tim dengan kode tersebut tidak ditemukan")
        await self._get_user(user_id)

        if team.leader_id == user_id:
            raise CannotJoinOwnTeam()

        existing = await self._membership(team.id, user_id)
        if existing is not None:
            if existing.invitation_status == InvitationStatus.ACCEPTED:
                raise AlreadyMember("Anda sudah menjadi anggota tim ini")
            if existing.invitation_status == InvitationStatus.PENDING:
                raise DuplicateInvitation(
                    "Anda sudah mengirim permintaan bergabung ke tim ini. Tunggu persetujuan dari ketua tim"
                )

        if await self._accepted_elsewhere(user_id, team.id) is not None:
            raise AlreadyMemberElsewhere(
                "Anda masih menjadi anggota tim lain. Silakan keluar atau hapus tim lama terlebih dahulu"
            )

        if await self._accepted_count(team.id) >= self.max_members:
            raise TeamFull(f"Tim ini sudah memiliki jumlah anggota maksimal ({self.max_members} anggota)")

        if existing is not None:  # REJECTED
            await self.db.delete(existing)
            await self.db.flush()

        member = TeamMember(
            team_id=team.id,
            user_id=user_id,
            role=MemberRole.ANGGOTA,
            invitation_status=InvitationStatus.PENDING,
            invited_by=user_id,
        )
        self.db.add(member)
        await self._commit("join team")
        logger.info("User %s requested to join team %s", user_id, team.id)
        return member

    async def leave_team(self, user_id: str, team_id: Optional[int] = None) -> TeamMember:
        stmt = select(TeamMember).where(
            TeamMember.user_id == user_id,
            TeamMember.invitation_status == InvitationStatus.ACCEPTED,
        )
        if team_id is not None:
            stmt = stmt.where(TeamMember.team_id == team_id)
        member = await self.db.scalar(stmt.limit(1))
        if member is None:
            raise NotTeamMember("You are not a member of any team")

        team = await self._get_team(member.team_id)
        if member.is_leader or team.leader_id == user_id:
            raise CannotLeaveAsLeader()

        await self._delete_member_verified(member, "leave team")
        logger.info("User %s left team %s", user_id, team.id)
        return member

    async def remove_member(self, team_id: int, member_id: int, leader_id: str) -> TeamMember:
        team = await self._get_team(team_id)
        self._require_leader(team, leader_id, "Only team leader can remove members")
        if team.is_fixed:
            raise TeamAlreadyFinalized("Cannot remove members from a finalized team")

        member = await self.db.get(TeamMember, member_id)
        if member is None or member.team_id != team.id:
            raise MemberNotFound()
        if member.is_leader or member.user_id == team.leader_id:
            raise CannotRemoveLeader()

        await self._delete_member_verified(member, "remove member from team")
        logger.info("Leader %s removed member %s from team %s", leader_id, member_id, team.id)
        return member

    async def cancel_invitation(self, member_id: int, leader_id: str) -> TeamMember:
        member = await self.db.get(TeamMember, member_id)
        if member is None:
            raise InvitationNotFound()
        team = await self._get_team(member.team_id)
        self._require_leader(team, leader_id, "Only team leader can cancel invitations")
        if member.invitation_status != InvitationStatus.PENDING:
            raise InvitationNotPending(f"Cannot cancel {member.invitation_status.value.lower()} invitation")
        if member.is_leader or member.user_id == team.leader_id:
            raise CannotRemoveLeader("Cannot cancel team leader invitation")

        await self._delete_member_verified(member, "cancel invitation")
        logger.info("Leader %s cancelled invitation %s", leader_id, member_id)
        return member

    async def delete_team(self, team_id: int, requester_id: str) -> TeamDeletion:
        team = await self._get_team(team_id)
        self._require_leader(team, requester_id, "Only team leader can delete the team")

        deletion = await self._purge_team(team.id)
        await self._commit("delete team")
        logger.info(
            "Team %s deleted by %s (%d members, %d submissions)",
            team_id,
            requester_id,
            deletion.members_affected,
            deletion.submissions_affected,
        )
        return deletion

    async def finalize_team(self, team_id: int, requester_id: str) -> Team:
        team = await self._get_team(team_id)
        self._require_leader(team, requester_id, "Only team leader can finalize the team")
        if team.is_fixed:
            raise TeamAlreadyFinalized("Team is already finalized")

        accepted_members = await self.db.scalar(
            select(func.count(TeamMember.id)).where(
                TeamMember.team_id == team.id,
                TeamMember.role == MemberRole.ANGGOTA,
                TeamMember.invitation_status == InvitationStatus.ACCEPTED,
            )
        )
        if not accepted_members:
            raise TeamNotReadyToFinalize()

        team.status = TeamStatus.FIXED
        await self._commit("finalize team")
        logger.info("Team %s finalized with %d accepted members", team.id, accepted_members)
        return team

    async def is_accepted_member(self, team_id: int, user_id: str) -> bool:
        member = await self.db.scalar(
            select(TeamMember.id).where(
                TeamMember.team_id == team_id,
                TeamMember.user_id == user_id,
                TeamMember.invitation_status == InvitationStatus.ACCEPTED,
            )
        )
        return member is not None
