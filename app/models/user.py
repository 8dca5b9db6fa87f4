from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Enum, String

from app.constants import UserRole
from app.database import Base
from app.utils import utcnow


class User(Base):
    """Local mirror of an SSO identity.

    ``id`` is the SSO subject, so it is a string rather than a serial key.
    """

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    nama = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True, index=True)
    role = Column(Enum(UserRole, native_enum=False, length=32), nullable=False, default=UserRole.MAHASISWA)
    nim = Column(String(32), nullable=True, index=True)
    nip = Column(String(32), nullable=True)
    prodi = Column(String(128), nullable=True)
    fakultas = Column(String(128), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"
