"""SSO bearer-token glue.

Tokens are issued by the campus SSO; this service only verifies them and
mirrors the identity into the local ``users`` table so foreign keys and
invitee lookups by NIM work.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import UserRole, is_admin_role, is_student
from app.database import get_db
from app.errors import AdminOnly, NotAStudent
from app.models.user import User

load_dotenv()

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: UserRole
    email: Optional[str] = None
    name: Optional[str] = None
    nim: Optional[str] = None
    nip: Optional[str] = None

    @property
    def is_student(self) -> bool:
        return is_student(self.role)

    @property
    def is_admin(self) -> bool:
        return is_admin_role(self.role)


def _verification_key() -> str:
    return os.getenv("SSO_PUBLIC_KEY") or os.getenv("SSO_JWT_SECRET", "dev-secret-change-me")


def _claim_role(payload: dict[str, Any]) -> Optional[UserRole]:
    candidates = payload.get("roles") or payload.get("role")
    if isinstance(candidates, str):
        candidates = [candidates]
    for raw in candidates or ():
        try:
            return UserRole(str(raw).strip().upper())
        except ValueError:
            continue
    return None


def decode_identity(token: str) -> Identity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    options: dict[str, bool] = {}
    audience = os.getenv("SSO_AUDIENCE")
    if not audience:
        options["verify_aud"] = False
    try:
        payload = jwt.decode(
            token,
            _verification_key(),
            algorithms=[os.getenv("SSO_JWT_ALGORITHM", "HS256")],
            audience=audience,
            issuer=os.getenv("SSO_ISSUER") or None,
            options=options,
        )
    except JWTError:
        logger.warning("Rejected SSO token that failed verification")
        raise credentials_exception

    subject = payload.get("sub")
    role = _claim_role(payload)
    if not subject or role is None:
        raise credentials_exception

    return Identity(
        user_id=str(subject),
        role=role,
        email=payload.get("email"),
        name=payload.get("name"),
        nim=payload.get("nim"),
        nip=payload.get("nip"),
    )


async def sync_user(db: AsyncSession, identity: Identity) -> User:
    """Insert or refresh the local copy of ``identity``."""
    user = await db.get(User, identity.user_id)
    if user is None:
        user = User(id=identity.user_id)
        db.add(user)
        logger.info("Registered SSO user %s (%s)", identity.user_id, identity.role.value)

    user.role = identity.role
    if identity.name:
        user.nama = identity.name
    if identity.email:
        user.email = identity.email
    if identity.nim:
        user.nim = identity.nim
    if identity.nip:
        user.nip = identity.nip
    await db.commit()
    return user


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    identity = decode_identity(credentials.credentials)
    await sync_user(db, identity)
    return identity


async def require_student(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_student:
        raise NotAStudent()
    return identity


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise AdminOnly()
    return identity
