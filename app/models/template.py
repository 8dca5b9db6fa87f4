from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text

from app.constants import TemplateType
from app.database import Base
from app.utils import utcnow


class Template(Base):
    """A letter template file admins publish for students to download."""

    __tablename__ = "templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    type = Column(
        Enum(TemplateType, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TemplateType.TEMPLATE_ONLY,
    )
    description = Column(Text, nullable=True)
    # storage key
    file_name = Column(String(512), nullable=False)
    file_url = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=True)
    file_type = Column(String(128), nullable=True)
    original_name = Column(String(255), nullable=False)
    # form fields for "Generate & Template"; None otherwise
    fields = Column(JSON, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
