# app/models/submission.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from app.constants import ResponseLetterTracking, SubmissionStatus
from app.database import Base
from app.utils import utcnow


class Submission(Base):
    __tablename__ = "submissions"

    # Fields a team member may edit while the submission is a draft
    EDITABLE_FIELDS = (
        "letter_purpose",
        "company_name",
        "company_address",
        "company_phone",
        "company_email",
        "company_supervisor",
        "position",
        "division",
        "start_date",
        "end_date",
        "description",
    )

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)

    letter_purpose = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    company_address = Column(Text, nullable=True)
    company_phone = Column(String(64), nullable=True)
    company_email = Column(String(255), nullable=True)
    company_supervisor = Column(String(255), nullable=True)
    position = Column(String(255), nullable=True)
    division = Column(String(255), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    description = Column(Text, nullable=True)

    status = Column(
        Enum(SubmissionStatus, native_enum=False, length=16),
        nullable=False,
        default=SubmissionStatus.DRAFT,
        index=True,
    )
    rejection_reason = Column(Text, nullable=True)
    approved_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    response_letter_status = Column(
        Enum(ResponseLetterTracking, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ResponseLetterTracking.PENDING,
    )
    # [{"status": "MENUNGGU", "date": "2026-01-01T00:00:00+00:00"}, ...]
    status_history = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_submissions_team_status", "team_id", "status"),
    )

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------
    def _record(self, status: SubmissionStatus, at: Optional[datetime] = None) -> None:
        pivot = at or utcnow()
        # JSON columns are not mutation-tracked; assign a new list
        self.status_history = [*(self.status_history or []), {"status": status.value, "date": pivot.isoformat()}]
        self.status = status

    def mark_submitted(self) -> None:
        now = utcnow()
        self.submitted_at = now
        self._record(SubmissionStatus.MENUNGGU, now)

    def mark_approved(self, admin_id: str) -> None:
        now = utcnow()
        self.approved_by = admin_id
        self.approved_at = now
        self.rejection_reason = None
        self._record(SubmissionStatus.DITERIMA, now)

    def mark_rejected(self, reason: str) -> None:
        self.rejection_reason = reason
        self.approved_at = None
        self._record(SubmissionStatus.DITOLAK)

    def mark_draft(self) -> None:
        self.rejection_reason = None
        self._record(SubmissionStatus.DRAFT)

    def __repr__(self) -> str:
        return f"<Submission id={self.id} team={self.team_id} status={self.status}>"
