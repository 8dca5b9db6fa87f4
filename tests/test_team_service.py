import pytest
from sqlalchemy import func, select

from app.constants import InvitationStatus, MemberRole, TeamStatus, UserRole
from app.errors import (
    AlreadyHasTeam,
    AlreadyMember,
    AlreadyMemberElsewhere,
    CannotJoinOwnTeam,
    CannotLeaveAsLeader,
    CannotRemoveLeader,
    DeleteVerificationFailed,
    DuplicateInvitation,
    InvitationNotFound,
    InvitationNotPending,
    NotAStudent,
    NotInvitationParticipant,
    NotTeamLeader,
    TeamAlreadyFinalized,
    TeamFull,
    TeamNotFound,
    TeamNotReadyToFinalize,
)
from app.models.submission import Submission
from app.models.team import Team
from app.models.team_member import TeamMember
from app.services.submission_service import SubmissionService
from app.services.team_service import TeamService


async def _accepted_count(db, user_id):
    return await db.scalar(
        select(func.count(TeamMember.id)).where(
            TeamMember.user_id == user_id,
            TeamMember.invitation_status == InvitationStatus.ACCEPTED,
        )
    )


async def _rows(db, team_id):
    return (await db.execute(select(TeamMember).where(TeamMember.team_id == team_id))).scalars().all()


@pytest.mark.anyio
async def test_create_team_writes_leader_row(db, make_user):
    leader = await make_user()
    team = await TeamService(db).create_team(leader.id)

    assert team.status == TeamStatus.PENDING
    assert len(team.code) == 6 and team.code.isalnum()
    rows = await _rows(db, team.id)
    assert len(rows) == 1
    assert rows[0].user_id == leader.id
    assert rows[0].role == MemberRole.KETUA
    assert rows[0].invitation_status == InvitationStatus.ACCEPTED


@pytest.mark.anyio
async def test_create_team_rejects_non_student(db, make_user):
    admin = await make_user(UserRole.ADMIN)
    with pytest.raises(NotAStudent):
        await TeamService(db).create_team(admin.id)


@pytest.mark.anyio
async def test_create_team_twice_is_refused(db, make_user):
    leader = await make_user()
    service = TeamService(db)
    await service.create_team(leader.id)
    with pytest.raises(AlreadyHasTeam):
        await service.create_team(leader.id)


@pytest.mark.anyio
async def test_create_team_refused_for_member_of_other_team(db, make_user):
    leader = await make_user()
    member = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)

    with pytest.raises(AlreadyMemberElsewhere):
        await service.create_team(member.id)


@pytest.mark.anyio
async def test_invite_by_nim_or_user_id(db, make_user):
    leader = await make_user()
    by_nim = await make_user()
    by_id = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)

    first = await service.invite_member(team.id, leader.id, by_nim.nim)
    second = await service.invite_member(team.id, leader.id, by_id.id)

    assert first.user_id == by_nim.id
    assert second.user_id == by_id.id
    assert first.invitation_status == InvitationStatus.PENDING
    assert first.invited_by == leader.id


@pytest.mark.anyio
async def test_invite_guards(db, make_user):
    leader = await make_user()
    other = await make_user()
    target = await make_user()
    lecturer = await make_user(UserRole.DOSEN, nim="D-1")
    service = TeamService(db)
    team = await service.create_team(leader.id)

    with pytest.raises(NotTeamLeader):
        await service.invite_member(team.id, other.id, target.nim)
    with pytest.raises(NotAStudent):
        await service.invite_member(team.id, leader.id, lecturer.id)

    await service.invite_member(team.id, leader.id, target.nim)
    with pytest.raises(DuplicateInvitation):
        await service.invite_member(team.id, leader.id, target.nim)


@pytest.mark.anyio
async def test_invite_accepted_member_again(db, make_user):
    leader = await make_user()
    member = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)

    with pytest.raises(AlreadyMember):
        await service.invite_member(team.id, leader.id, member.nim)


@pytest.mark.anyio
async def test_reinvite_after_rejection_replaces_row(db, make_user):
    leader = await make_user()
    target = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)

    first = await service.invite_member(team.id, leader.id, target.nim)
    first_id = first.id
    await service.respond_to_invitation(first_id, target.id, False)

    second = await service.invite_member(team.id, leader.id, target.nim)

    assert second.invitation_status == InvitationStatus.PENDING
    rows = [row for row in await _rows(db, team.id) if row.user_id == target.id]
    assert len(rows) == 1
    assert rows[0].id == second.id


@pytest.mark.anyio
async def test_respond_requires_pending_and_participant(db, make_user):
    leader = await make_user()
    target = await make_user()
    stranger = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, target.nim)

    with pytest.raises(NotInvitationParticipant):
        await service.respond_to_invitation(invitation.id, stranger.id, True)

    answered = await service.respond_to_invitation(invitation.id, target.id, False)
    assert answered.invitation_status == InvitationStatus.REJECTED
    assert answered.responded_at is not None

    with pytest.raises(InvitationNotFound):
        await service.respond_to_invitation(invitation.id, target.id, True)
    with pytest.raises(InvitationNotFound):
        await service.respond_to_invitation(9999, target.id, True)


@pytest.mark.anyio
async def test_accept_deletes_teams_led_by_invitee(db, make_user):
    leader = await make_user()
    invitee = await make_user()
    service = TeamService(db)
    team_a = await service.create_team(leader.id)
    team_b = await service.create_team(invitee.id)
    team_b_id = team_b.id

    invitation = await service.invite_member(team_a.id, leader.id, invitee.nim)
    accepted = await service.respond_to_invitation(invitation.id, invitee.id, True)

    assert accepted.invitation_status == InvitationStatus.ACCEPTED
    assert await db.scalar(select(Team.id).where(Team.id == team_b_id)) is None
    assert await _rows(db, team_b_id) == []
    assert await _accepted_count(db, invitee.id) == 1


@pytest.mark.anyio
async def test_accept_never_finalizes(db, make_user):
    leader = await make_user()
    member = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)

    refreshed = await db.get(Team, team.id)
    assert refreshed.status == TeamStatus.PENDING


@pytest.mark.anyio
async def test_accept_refused_while_member_elsewhere(db, make_user):
    leader_a = await make_user()
    leader_b = await make_user()
    member = await make_user()
    service = TeamService(db)
    team_a = await service.create_team(leader_a.id)
    team_b = await service.create_team(leader_b.id)

    invite_a = await service.invite_member(team_a.id, leader_a.id, member.nim)
    invite_b = await service.invite_member(team_b.id, leader_b.id, member.nim)
    await service.respond_to_invitation(invite_a.id, member.id, True)

    with pytest.raises(AlreadyMemberElsewhere):
        await service.respond_to_invitation(invite_b.id, member.id, True)
    assert await _accepted_count(db, member.id) == 1


@pytest.mark.anyio
async def test_join_team_creates_self_invited_request(db, make_user):
    leader = await make_user()
    student = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)

    request = await service.join_team(team.code.lower(), student.id)

    assert request.invitation_status == InvitationStatus.PENDING
    assert request.invited_by == student.id
    assert request.role == MemberRole.ANGGOTA

    with pytest.raises(DuplicateInvitation):
        await service.join_team(team.code, student.id)

    confirmed = await service.respond_to_invitation(request.id, leader.id, True)
    assert confirmed.invitation_status == InvitationStatus.ACCEPTED

    invitations = await service.get_my_invitations(student.id)
    assert invitations[0]["is_join_request"] is True


@pytest.mark.anyio
async def test_join_team_guards(db, make_user):
    leader = await make_user()
    student = await make_user()
    service = TeamService(db, max_members=2)
    team = await service.create_team(leader.id)

    with pytest.raises(TeamNotFound):
        await service.join_team("ZZZZZZ", student.id)
    with pytest.raises(CannotJoinOwnTeam):
        await service.join_team(team.code, leader.id)

    invitation = await service.invite_member(team.id, leader.id, student.nim)
    await service.respond_to_invitation(invitation.id, student.id, True)
    with pytest.raises(AlreadyMember):
        await service.join_team(team.code, student.id)

    latecomer = await make_user()
    with pytest.raises(TeamFull):
        await service.join_team(team.code, latecomer.id)


@pytest.mark.anyio
async def test_join_refused_while_member_elsewhere(db, make_user):
    leader_a = await make_user()
    leader_b = await make_user()
    member = await make_user()
    service = TeamService(db)
    team_a = await service.create_team(leader_a.id)
    team_b = await service.create_team(leader_b.id)
    invitation = await service.invite_member(team_a.id, leader_a.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)

    with pytest.raises(AlreadyMemberElsewhere):
        await service.join_team(team_b.code, member.id)


@pytest.mark.anyio
async def test_leave_team(db, make_user):
    leader = await make_user()
    member = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)

    with pytest.raises(CannotLeaveAsLeader):
        await service.leave_team(leader.id)

    left = await service.leave_team(member.id)
    assert left.team_id == team.id
    assert await _accepted_count(db, member.id) == 0


@pytest.mark.anyio
async def test_leave_reports_surviving_row(db, make_user, monkeypatch):
    leader = await make_user()
    member = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)

    async def _no_delete(instance):
        return None

    monkeypatch.setattr(db, "delete", _no_delete)
    with pytest.raises(DeleteVerificationFailed):
        await service.leave_team(member.id)


@pytest.mark.anyio
async def test_remove_member_and_cancel_invitation(db, make_user):
    leader = await make_user()
    member = await make_user()
    pending = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)
    outstanding = await service.invite_member(team.id, leader.id, pending.nim)

    leader_row = next(row for row in await _rows(db, team.id) if row.role == MemberRole.KETUA)
    with pytest.raises(CannotRemoveLeader):
        await service.remove_member(team.id, leader_row.id, leader.id)
    with pytest.raises(NotTeamLeader):
        await service.remove_member(team.id, invitation.id, member.id)
    with pytest.raises(InvitationNotPending):
        await service.cancel_invitation(invitation.id, leader.id)

    await service.cancel_invitation(outstanding.id, leader.id)
    await service.remove_member(team.id, invitation.id, leader.id)

    remaining = await _rows(db, team.id)
    assert [row.user_id for row in remaining] == [leader.id]


@pytest.mark.anyio
async def test_finalize_requires_member_and_is_permanent(db, make_user):
    leader = await make_user()
    member = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)

    with pytest.raises(TeamNotReadyToFinalize):
        await service.finalize_team(team.id, leader.id)

    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)
    with pytest.raises(NotTeamLeader):
        await service.finalize_team(team.id, member.id)

    finalized = await service.finalize_team(team.id, leader.id)
    assert finalized.status == TeamStatus.FIXED

    with pytest.raises(TeamAlreadyFinalized):
        await service.finalize_team(team.id, leader.id)
    late = await make_user()
    with pytest.raises(TeamAlreadyFinalized):
        await service.invite_member(team.id, leader.id, late.nim)
    with pytest.raises(TeamAlreadyFinalized):
        await service.remove_member(team.id, invitation.id, leader.id)


@pytest.mark.anyio
async def test_delete_team_purges_members_and_submissions(db, fixed_team):
    team, leader, member = await fixed_team()
    team_id = team.id
    await SubmissionService(db).create_submission(team_id, member.id, {"company_name": "PT Maju"})

    with pytest.raises(NotTeamLeader):
        await TeamService(db).delete_team(team_id, member.id)

    deletion = await TeamService(db).delete_team(team_id, leader.id)

    assert deletion.members_affected == 2
    assert deletion.submissions_affected == 1
    assert await db.scalar(select(Team.id).where(Team.id == team_id)) is None
    assert await db.scalar(select(func.count(Submission.id)).where(Submission.team_id == team_id)) == 0
    assert await _accepted_count(db, member.id) == 0


@pytest.mark.anyio
async def test_my_teams_view_sorts_accepted_first(db, make_user):
    leader = await make_user()
    member = await make_user()
    pending = await make_user()
    service = TeamService(db)
    team = await service.create_team(leader.id)
    invitation = await service.invite_member(team.id, leader.id, member.nim)
    await service.respond_to_invitation(invitation.id, member.id, True)
    await service.invite_member(team.id, leader.id, pending.nim)

    teams = await service.get_my_teams(leader.id)

    assert len(teams) == 1
    assert teams[0]["is_leader"] is True
    statuses = [view["status"] for view in teams[0]["members"]]
    assert statuses[-1] == InvitationStatus.PENDING
    assert statuses[:2] == [InvitationStatus.ACCEPTED, InvitationStatus.ACCEPTED]

    invitations = await service.get_my_invitations(pending.id)
    assert invitations[0]["team_code"] == team.code
    assert invitations[0]["inviter_name"] == leader.nama


@pytest.mark.anyio
async def test_finalize_scenario(db, make_user):
    u1 = await make_user()
    u2 = await make_user()
    service = TeamService(db)
    team = await service.create_team(u1.id)

    with pytest.raises(TeamNotReadyToFinalize) as excinfo:
        await service.finalize_team(team.id, u1.id)
    assert excinfo.value.status_code == 409

    invitation = await service.invite_member(team.id, u1.id, u2.nim)
    await service.respond_to_invitation(invitation.id, u2.id, True)
    finalized = await service.finalize_team(team.id, u1.id)

    assert finalized.status == TeamStatus.FIXED
    assert await _accepted_count(db, u1.id) == 1
    assert await _accepted_count(db, u2.id) == 1
