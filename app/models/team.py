from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String

from app.constants import TeamStatus
from app.database import Base
from app.utils import utcnow


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(6), unique=True, nullable=False, index=True)
    leader_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(TeamStatus, native_enum=False, length=16), nullable=False, default=TeamStatus.PENDING)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_fixed(self) -> bool:
        return self.status == TeamStatus.FIXED

    def __repr__(self) -> str:
        return f"<Team id={self.id} code={self.code} status={self.status}>"
