import os
from datetime import datetime, timezone
import secrets
import string
from typing import Any, Iterable, Optional

from sqlalchemy import inspect as sa_inspect

from app.constants import TEAM_CODE_LENGTH

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def envelope(message: str, data: Any = None, *, success: bool = True) -> dict:
    """Wrap a payload in the ``{success, message, data?}`` response shape."""
    body: dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    return body


def generate_team_code(length: int = TEAM_CODE_LENGTH) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        value = default
    if minimum is not None and value < minimum:
        value = minimum
    return value


def file_extension(file_name: Optional[str]) -> str:
    if not file_name or "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what DateTime columns hand back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_dict(instance, *, exclude: Iterable[str] = ()) -> dict[str, Any]:
    """Column values of an ORM instance keyed by attribute name."""
    skipped = set(exclude)
    return {
        attr.key: getattr(instance, attr.key)
        for attr in sa_inspect(instance).mapper.column_attrs
        if attr.key not in skipped
    }
