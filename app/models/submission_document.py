from __future__ import annotations

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String

from app.constants import DocumentType
from app.database import Base
from app.utils import utcnow


class SubmissionDocument(Base):
    __tablename__ = "submission_documents"

    id = Column(Integer, primary_key=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = Column(Enum(DocumentType, native_enum=False, length=32), nullable=False)
    # storage key, not the user's file name
    file_name = Column(String(512), nullable=False)
    original_name = Column(String(255), nullable=False)
    file_type = Column(String(128), nullable=True)
    file_size = Column(Integer, nullable=True)
    file_url = Column(String(1024), nullable=False)
    uploaded_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    member_user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
