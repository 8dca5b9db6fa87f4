"""Typed application errors.

Engines raise these; the exception handlers in ``app.main`` turn them into the
``{success: false, message, code}`` envelope with ``status_code``.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class BadRequestError(AppError):
    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Access forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"


class ValidationFailedError(AppError):
    status_code = 422
    code = "VALIDATION_FAILED"
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, *, errors: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class InternalError(AppError):
    pass


# Users ---------------------------------------------------------------

class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class NotAStudent(ForbiddenError):
    code = "NOT_A_STUDENT"
    default_message = "Only students (mahasiswa) can perform this action"


class AdminOnly(ForbiddenError):
    code = "ADMIN_ONLY"
    default_message = "Admin only"


# Teams ---------------------------------------------------------------

class TeamNotFound(NotFoundError):
    code = "TEAM_NOT_FOUND"
    default_message = "Team not found"


class NotTeamLeader(ForbiddenError):
    code = "NOT_TEAM_LEADER"
    default_message = "Only team leader can perform this action"


class NotTeamMember(ForbiddenError):
    code = "NOT_TEAM_MEMBER"
    default_message = "You are not a member of this team"


class AlreadyHasTeam(ConflictError):
    code = "ALREADY_HAS_TEAM"
    default_message = "You already have a team. Each student can only create one team"


class AlreadyMemberElsewhere(ConflictError):
    code = "ALREADY_MEMBER_ELSEWHERE"
    default_message = "Already a member of another team. Each student can only join one team"


class TeamAlreadyFinalized(ConflictError):
    code = "TEAM_ALREADY_FINALIZED"
    default_message = "Team already finalized"


class TeamNotReadyToFinalize(ConflictError):
    code = "TEAM_NOT_READY"
    default_message = "At least 1 member must accept the invitation before finalizing"


class CannotJoinOwnTeam(BadRequestError):
    code = "CANNOT_JOIN_OWN_TEAM"
    default_message = "Anda adalah ketua tim ini. Tidak dapat mengirim permintaan bergabung pada tim sendiri"


class TeamFull(ConflictError):
    code = "TEAM_FULL"
    default_message = "Team already has the maximum number of members"


class DuplicateInvitation(ConflictError):
    code = "DUPLICATE_INVITATION"
    default_message = "Invitation already sent to this member"


class AlreadyMember(ConflictError):
    code = "ALREADY_MEMBER"
    default_message = "This member is already in the team"


class InvitationNotFound(NotFoundError):
    code = "INVITATION_NOT_FOUND"
    default_message = "Invitation not found"


class InvitationNotPending(BadRequestError):
    code = "INVITATION_NOT_PENDING"
    default_message = "Can only cancel pending invitations"


class NotInvitationParticipant(ForbiddenError):
    code = "NOT_INVITATION_PARTICIPANT"
    default_message = "Unauthorized: only team leader or invitee can respond"


class MemberNotFound(NotFoundError):
    code = "MEMBER_NOT_FOUND"
    default_message = "Member not found in this team"


class CannotLeaveAsLeader(ForbiddenError):
    code = "CANNOT_LEAVE_AS_LEADER"
    default_message = "Team leader cannot leave the team. Please delete the team instead."


class CannotRemoveLeader(BadRequestError):
    code = "CANNOT_REMOVE_LEADER"
    default_message = "Cannot remove team leader"


class DeleteVerificationFailed(InternalError):
    code = "DELETE_VERIFICATION_FAILED"
    default_message = "Record still exists after deletion"


# Submissions ---------------------------------------------------------

class SubmissionNotFound(NotFoundError):
    code = "SUBMISSION_NOT_FOUND"
    default_message = "Submission not found"


class TeamNotFinalized(ConflictError):
    code = "TEAM_NOT_FINALIZED"
    default_message = "Team must be fixed before creating submission"


class ActiveSubmissionExists(ConflictError):
    code = "ACTIVE_SUBMISSION_EXISTS"
    default_message = "Team already has a submission in progress"


class SubmissionNotDraft(ConflictError):
    code = "SUBMISSION_NOT_DRAFT"
    default_message = "Can only edit draft submissions"


class InvalidSubmissionStatus(ConflictError):
    code = "INVALID_SUBMISSION_STATUS"
    default_message = "Invalid submission status"


class IncompleteSubmission(BadRequestError):
    code = "INCOMPLETE_SUBMISSION"
    default_message = "Company name and address are required before submitting for review"


class RejectionReasonRequired(BadRequestError):
    code = "REJECTION_REASON_REQUIRED"
    default_message = "Rejection reason is required"


# Files ---------------------------------------------------------------

class InvalidFileType(BadRequestError):
    code = "INVALID_FILE_TYPE"
    default_message = "Invalid file type"


class FileTooLarge(BadRequestError):
    code = "FILE_TOO_LARGE"
    default_message = "File size exceeds maximum limit"


class DocumentNotFound(NotFoundError):
    code = "DOCUMENT_NOT_FOUND"
    default_message = "Document not found"


class StorageNotConfigured(InternalError):
    code = "STORAGE_NOT_CONFIGURED"
    default_message = "Storage bucket is not configured"


class StorageError(InternalError):
    code = "STORAGE_ERROR"
    default_message = "File upload failed"


# Letters -------------------------------------------------------------

class LetterNumberExhausted(InternalError):
    code = "LETTER_NUMBER_EXHAUSTED"
    default_message = "Could not allocate a unique letter number"


class ResponseLetterNotFound(NotFoundError):
    code = "RESPONSE_LETTER_NOT_FOUND"
    default_message = "Surat balasan tidak ditemukan"


class ResponseLetterExists(ConflictError):
    code = "RESPONSE_LETTER_EXISTS"
    default_message = "Surat balasan sudah pernah disubmit untuk submission ini"


class ResponseLetterAlreadyVerified(ConflictError):
    code = "RESPONSE_LETTER_ALREADY_VERIFIED"
    default_message = "Surat balasan sudah diverifikasi"


# Templates -----------------------------------------------------------

class TemplateNotFound(NotFoundError):
    code = "TEMPLATE_NOT_FOUND"
    default_message = "Template tidak ditemukan"


class InvalidTemplate(BadRequestError):
    code = "INVALID_TEMPLATE"
    default_message = "Template tidak valid"
