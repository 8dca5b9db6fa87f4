"""Domain engines and their storage/rendering collaborators."""

from .admin_service import AdminService
from .file_access import FileAccessService
from .letter_service import LetterService
from .response_letter_service import ResponseLetterService
from .storage import DocumentStorage, get_document_storage
from .submission_service import SubmissionService
from .team_service import TeamService
from .template_service import TemplateService

__all__ = [
    "AdminService",
    "DocumentStorage",
    "FileAccessService",
    "LetterService",
    "ResponseLetterService",
    "SubmissionService",
    "TeamService",
    "TemplateService",
    "get_document_storage",
]
