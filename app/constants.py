"""Domain states, roles and user-facing messages."""

from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    MAHASISWA = "MAHASISWA"
    ADMIN = "ADMIN"
    KAPRODI = "KAPRODI"
    WAKIL_DEKAN = "WAKIL_DEKAN"
    DOSEN = "DOSEN"
    PEMBIMBING_LAPANGAN = "PEMBIMBING_LAPANGAN"


ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.KAPRODI, UserRole.WAKIL_DEKAN})


def _as_role(role) -> UserRole | None:
    if isinstance(role, UserRole):
        return role
    if not isinstance(role, str):
        return None
    try:
        return UserRole(role.strip().upper())
    except ValueError:
        return None


def is_student(role) -> bool:
    return _as_role(role) is UserRole.MAHASISWA


def is_admin_role(role) -> bool:
    """ADMIN, KAPRODI and WAKIL_DEKAN share the admin capability."""
    return _as_role(role) in ADMIN_ROLES


class TeamStatus(str, enum.Enum):
    PENDING = "PENDING"
    FIXED = "FIXED"


class MemberRole(str, enum.Enum):
    KETUA = "KETUA"
    ANGGOTA = "ANGGOTA"


class InvitationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class SubmissionStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    MENUNGGU = "MENUNGGU"  # waiting for admin review
    DITOLAK = "DITOLAK"  # rejected
    DITERIMA = "DITERIMA"  # approved


ACTIVE_SUBMISSION_STATUSES = (SubmissionStatus.DRAFT, SubmissionStatus.MENUNGGU)


class DocumentType(str, enum.Enum):
    KTP = "KTP"
    TRANSKRIP = "TRANSKRIP"
    KRS = "KRS"
    PROPOSAL = "PROPOSAL"
    OTHER = "OTHER"
    PROPOSAL_KETUA = "PROPOSAL_KETUA"
    SURAT_KESEDIAAN = "SURAT_KESEDIAAN"
    FORM_PERMOHONAN = "FORM_PERMOHONAN"
    KRS_SEMESTER_4 = "KRS_SEMESTER_4"
    DAFTAR_KUMPULAN_NILAI = "DAFTAR_KUMPULAN_NILAI"
    BUKTI_PEMBAYARAN_UKT = "BUKTI_PEMBAYARAN_UKT"


class LetterFormat(str, enum.Enum):
    PDF = "pdf"
    DOCX = "docx"


class ResponseLetterStatus(str, enum.Enum):
    """The company's decision as written in its reply letter."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ResponseLetterTracking(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    VERIFIED = "verified"


class TemplateType(str, enum.Enum):
    TEMPLATE_ONLY = "Template Only"
    GENERATE_AND_TEMPLATE = "Generate & Template"


ALLOWED_DOCUMENT_EXTENSIONS = ("pdf", "doc", "docx")
RESPONSE_LETTER_EXTENSIONS = ("pdf",)
TEMPLATE_EXTENSIONS = ("doc", "docx", "pdf", "html", "txt")
TEMPLATE_CONTENT_TYPES = frozenset(
    {
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/pdf",
        "text/html",
        "text/plain",
    }
)
TEAM_CODE_LENGTH = 6


class Messages:
    TEAM_CREATED = "Team created successfully"
    TEAM_DELETED = "Team deleted successfully"
    TEAM_FINALIZED = "Team finalized successfully"
    TEAMS_RETRIEVED = "Teams retrieved"
    MEMBERS_RETRIEVED = "Team members retrieved"
    INVITATIONS_RETRIEVED = "Invitations retrieved"
    MEMBER_INVITED = "Member invited successfully"
    INVITATION_ACCEPTED = "Invitation accepted successfully"
    INVITATION_REJECTED = "Invitation rejected successfully"
    INVITATION_CANCELLED = "Invitation cancelled successfully"
    MEMBER_REMOVED = "Member removed successfully"
    LEFT_TEAM = "Successfully left team"
    JOIN_REQUESTED = "Permintaan bergabung dengan tim berhasil dikirim"

    SUBMISSION_CREATED = "Submission created successfully"
    SUBMISSION_UPDATED = "Submission updated successfully"
    SUBMISSION_SUBMITTED = "Submission submitted for review"
    SUBMISSION_RESET = "Submission reset to draft"
    SUBMISSIONS_RETRIEVED = "Submissions retrieved"
    SUBMISSION_RETRIEVED = "Submission retrieved"
    SUBMISSION_APPROVED = "Submission approved"
    SUBMISSION_REJECTED = "Submission rejected"
    STATUS_UPDATED = "Status submission berhasil diupdate"
    STATISTICS_RETRIEVED = "Statistics retrieved"
    DOCUMENT_UPLOADED = "Document uploaded successfully"
    DOCUMENT_DELETED = "Document deleted successfully"
    DOCUMENTS_RETRIEVED = "Documents retrieved"
    LETTER_GENERATED = "Letter generated successfully"
    LETTERS_RETRIEVED = "Letters retrieved"

    RESPONSE_LETTER_SUBMITTED = "Surat balasan berhasil dikirim"
    RESPONSE_LETTER_VERIFIED = "Surat balasan berhasil diverifikasi"
    RESPONSE_LETTER_DELETED = "Surat balasan berhasil dihapus"
    RESPONSE_LETTER_RETRIEVED = "Surat balasan ditemukan"
    RESPONSE_LETTERS_RETRIEVED = "Daftar surat balasan"

    TEMPLATES_RETRIEVED = "Templates retrieved"
    TEMPLATE_RETRIEVED = "Template retrieved"
    TEMPLATE_CREATED = "Template berhasil dibuat"
    TEMPLATE_UPDATED = "Template berhasil diupdate"
    TEMPLATE_DELETED = "Template berhasil dihapus"
    TEMPLATE_TOGGLED = "Status template berhasil diubah"

    VALIDATION_FAILED = "Validation failed"
    INTERNAL_SERVER_ERROR = "Internal server error"
