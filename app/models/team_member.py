from __future__ import annotations

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String

from app.constants import InvitationStatus, MemberRole
from app.database import Base
from app.utils import utcnow


class TeamMember(Base):
    """A membership row; while PENDING it is the invitation itself."""

    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(Enum(MemberRole, native_enum=False, length=16), nullable=False, default=MemberRole.ANGGOTA)
    invitation_status = Column(
        Enum(InvitationStatus, native_enum=False, length=16),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    invited_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    invited_at = Column(DateTime, nullable=False, default=utcnow)
    responded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # at most one row per (team, user); racing joins surface as IntegrityError
        Index("uq_team_members_team_user", "team_id", "user_id", unique=True),
        Index("ix_team_members_user_status", "user_id", "invitation_status"),
    )

    @property
    def is_leader(self) -> bool:
        return self.role == MemberRole.KETUA

    def mark_responded(self, accept: bool) -> None:
        self.invitation_status = InvitationStatus.ACCEPTED if accept else InvitationStatus.REJECTED
        self.responded_at = utcnow()

    def __repr__(self) -> str:
        return (
            f"<TeamMember id={self.id} team={self.team_id} user={self.user_id} "
            f"role={self.role} status={self.invitation_status}>"
        )
