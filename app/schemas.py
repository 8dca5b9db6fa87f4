# app/schemas.py
# ------------------------------------------------------------
# Pydantic v2 request schemas, organized by domain
# ------------------------------------------------------------
from datetime import date
import re
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.constants import LetterFormat, ResponseLetterStatus


_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_SCRIPT_TAG_RE = re.compile(r"<\s*/?\s*script", re.IGNORECASE)


def _sanitize_single_line_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if any(ch in {"\n", "\r"} for ch in cleaned):
        raise ValueError("Value must be a single line of text")
    if "<" in cleaned or ">" in cleaned:
        raise ValueError("HTML tags are not allowed in this field")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


def _sanitize_multiline_text(value: str | None, *, allow_empty: bool = False) -> str | None:
    if value is None:
        return value
    if not isinstance(value, str):
        raise TypeError("Expected string input")
    cleaned = _CONTROL_CHAR_RE.sub("", value).strip()
    if not allow_empty and not cleaned:
        raise ValueError("Value cannot be empty")
    if _SCRIPT_TAG_RE.search(cleaned):
        raise ValueError("Script tags are not allowed")
    return cleaned


# ============================================================
# Teams
# ============================================================

class TeamInvite(BaseModel):
    """Invitee by NIM; a raw user id is accepted as well."""

    identifier: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("identifier", "member_nim", "nim", "user_id"),
    )

    @field_validator("identifier", mode="before")
    @classmethod
    def _clean_identifier(cls, value: str) -> str:
        return _sanitize_single_line_text(value)


class TeamJoin(BaseModel):
    team_code: str = Field(
        min_length=6,
        max_length=6,
        validation_alias=AliasChoices("team_code", "teamCode", "code"),
    )

    @field_validator("team_code", mode="before")
    @classmethod
    def _clean_code(cls, value: str) -> str:
        cleaned = _sanitize_single_line_text(value)
        if not re.fullmatch(r"[A-Za-z0-9]{6}", cleaned):
            raise ValueError("Team code must be 6 letters or digits")
        return cleaned.upper()


class InvitationResponse(BaseModel):
    accept: bool


# ============================================================
# Submissions
# ============================================================

class SubmissionFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    letter_purpose: Optional[str] = Field(default=None, max_length=255)
    company_name: Optional[str] = Field(default=None, max_length=255)
    company_address: Optional[str] = Field(default=None, max_length=2000)
    company_phone: Optional[str] = Field(default=None, max_length=64, pattern=r"^[0-9+()\-\s]*$")
    company_email: Optional[EmailStr] = None
    company_supervisor: Optional[str] = Field(default=None, max_length=255)
    position: Optional[str] = Field(default=None, max_length=255)
    division: Optional[str] = Field(default=None, max_length=255)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=5000)

    @field_validator(
        "letter_purpose",
        "company_name",
        "company_phone",
        "company_supervisor",
        "position",
        "division",
        mode="before",
    )
    @classmethod
    def _clean_single_line(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_single_line_text(value, allow_empty=True) if value is not None else value

    @field_validator("company_address", "description", mode="before")
    @classmethod
    def _clean_multiline(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_multiline_text(value, allow_empty=True) if value is not None else value

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class SubmissionCreate(SubmissionFields):
    team_id: int = Field(gt=0, validation_alias=AliasChoices("team_id", "teamId"))


class SubmissionUpdate(SubmissionFields):
    pass


# ============================================================
# Admin review
# ============================================================

class ApproveRequest(BaseModel):
    auto_generate_letter: bool = False
    letter_format: LetterFormat = LetterFormat.PDF


class RejectRequest(BaseModel):
    reason: str = Field(max_length=2000, validation_alias=AliasChoices("reason", "rejection_reason"))

    @field_validator("reason", mode="before")
    @classmethod
    def _clean_reason(cls, value: str) -> str:
        return _sanitize_multiline_text(value, allow_empty=True)


class StatusUpdate(BaseModel):
    status: Literal["APPROVED", "REJECTED"]
    rejection_reason: Optional[str] = Field(default=None, max_length=2000)
    auto_generate_letter: bool = False
    letter_format: LetterFormat = LetterFormat.PDF

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: str) -> str:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("rejection_reason", mode="before")
    @classmethod
    def _clean_reason(cls, value: Optional[str]) -> Optional[str]:
        return _sanitize_multiline_text(value, allow_empty=True) if value is not None else value


class GenerateLetterRequest(BaseModel):
    format: LetterFormat = LetterFormat.PDF


# ============================================================
# Response letters
# ============================================================

class VerifyResponseLetter(BaseModel):
    letter_status: ResponseLetterStatus = Field(validation_alias=AliasChoices("letter_status", "letterStatus", "decision"))

    @field_validator("letter_status", mode="before")
    @classmethod
    def _lower_status(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


# ============================================================
# Letter templates
# ============================================================

class TemplateField(BaseModel):
    """One input a "Generate & Template" template asks the student for."""

    model_config = ConfigDict(extra="ignore")

    variable: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    label: str = Field(min_length=1, max_length=255)
    type: Literal["text", "textarea", "number", "date", "time", "email", "select"]
    order: int = Field(ge=0)
    required: bool = False
    placeholder: Optional[str] = Field(default=None, max_length=255)
    options: Optional[list[str]] = None

    @field_validator("label", mode="before")
    @classmethod
    def _clean_label(cls, value: str) -> str:
        return _sanitize_single_line_text(value)
