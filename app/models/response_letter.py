from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String

from app.constants import ResponseLetterStatus
from app.database import Base
from app.utils import utcnow


class ResponseLetter(Base):
    """The company's reply to an internship request; one per submission."""

    __tablename__ = "response_letters"

    id = Column(Integer, primary_key=True)
    submission_id = Column(
        Integer,
        ForeignKey("submissions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    letter_status = Column(
        Enum(ResponseLetterStatus, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ResponseLetterStatus.APPROVED,
    )
    original_name = Column(String(255), nullable=False)
    file_name = Column(String(512), nullable=False)
    file_type = Column(String(128), nullable=True)
    file_size = Column(Integer, nullable=True)
    file_url = Column(String(1024), nullable=False)
    member_user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at = Column(DateTime, nullable=False, default=utcnow)
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    verified_by_admin_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def mark_verified(self, admin_id: str, decision: ResponseLetterStatus) -> None:
        self.verified = True
        self.verified_at = utcnow()
        self.verified_by_admin_id = admin_id
        self.letter_status = decision
