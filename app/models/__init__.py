"""ORM models; importing this package registers every table on ``Base.metadata``."""

from app.models.user import User
from app.models.team import Team
from app.models.team_member import TeamMember
from app.models.submission import Submission
from app.models.submission_document import SubmissionDocument
from app.models.generated_letter import GeneratedLetter
from app.models.response_letter import ResponseLetter
from app.models.template import Template

__all__ = [
    "GeneratedLetter",
    "ResponseLetter",
    "Submission",
    "SubmissionDocument",
    "Team",
    "TeamMember",
    "Template",
    "User",
]
