from __future__ import annotations

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String

from app.constants import LetterFormat
from app.database import Base
from app.utils import utcnow


class GeneratedLetter(Base):
    __tablename__ = "generated_letters"

    id = Column(Integer, primary_key=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    letter_number = Column(String(64), unique=True, nullable=False)
    file_name = Column(String(512), nullable=False)
    file_url = Column(String(1024), nullable=False)
    file_type = Column(
        Enum(LetterFormat, native_enum=False, length=8, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=LetterFormat.PDF,
    )
    generated_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    generated_at = Column(DateTime, nullable=False, default=utcnow)
