from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity, require_student
from app.constants import Messages
from app.database import get_db
from app.schemas import InvitationResponse, TeamInvite, TeamJoin
from app.services import TeamService
from app.utils import as_dict, envelope

router = APIRouter(prefix="/api/teams", tags=["Teams"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_team(
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    team = await TeamService(db).create_team(identity.user_id)
    return envelope(Messages.TEAM_CREATED, as_dict(team))


@router.get("/my-team")
async def my_teams(
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    teams = await TeamService(db).get_my_teams(identity.user_id)
    return envelope(Messages.TEAMS_RETRIEVED, teams)


@router.get("/my-invitations")
async def my_invitations(
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    invitations = await TeamService(db).get_my_invitations(identity.user_id)
    return envelope(Messages.INVITATIONS_RETRIEVED, invitations)


@router.post("/join", status_code=status.HTTP_201_CREATED)
async def join_team(
    payload: TeamJoin,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    member = await TeamService(db).join_team(payload.team_code, identity.user_id)
    return envelope(Messages.JOIN_REQUESTED, as_dict(member))


@router.patch("/members/{member_id}/respond")
async def respond_to_invitation(
    member_id: int,
    payload: InvitationResponse,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    member = await TeamService(db).respond_to_invitation(member_id, identity.user_id, payload.accept)
    message = Messages.INVITATION_ACCEPTED if payload.accept else Messages.INVITATION_REJECTED
    return envelope(message, as_dict(member))


@router.delete("/leave")
async def leave_team(
    team_id: Optional[int] = Query(default=None, gt=0),
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    member = await TeamService(db).leave_team(identity.user_id, team_id)
    return envelope(Messages.LEFT_TEAM, {"team_id": member.team_id})


@router.delete("/invitations/{invitation_id}/cancel")
async def cancel_invitation(
    invitation_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    member = await TeamService(db).cancel_invitation(invitation_id, identity.user_id)
    return envelope(Messages.INVITATION_CANCELLED, {"id": invitation_id, "team_id": member.team_id})


@router.get("/{team_id}/members")
async def team_members(
    team_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    members = await TeamService(db).get_team_members(team_id)
    return envelope(Messages.MEMBERS_RETRIEVED, members)


@router.post("/{team_id}/invite", status_code=status.HTTP_201_CREATED)
async def invite_member(
    team_id: int,
    payload: TeamInvite,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    member = await TeamService(db).invite_member(team_id, identity.user_id, payload.identifier)
    return envelope(Messages.MEMBER_INVITED, as_dict(member))


@router.delete("/{team_id}/members/{member_id}")
async def remove_member(
    team_id: int,
    member_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    await TeamService(db).remove_member(team_id, member_id, identity.user_id)
    return envelope(Messages.MEMBER_REMOVED, {"id": member_id, "team_id": team_id})


@router.put("/{team_id}/finalize")
async def finalize_team(
    team_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    team = await TeamService(db).finalize_team(team_id, identity.user_id)
    return envelope(Messages.TEAM_FINALIZED, as_dict(team))


@router.delete("/{team_id}")
async def delete_team(
    team_id: int,
    identity: Identity = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    deletion = await TeamService(db).delete_team(team_id, identity.user_id)
    return envelope(
        Messages.TEAM_DELETED,
        {
            "team_id": deletion.team_id,
            "members_affected": deletion.members_affected,
            "submissions_affected": deletion.submissions_affected,
        },
    )
