from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import BadRequestError
from .models import WRITABLE_FIELDS, TodoPriority, TodoStatus

# Shared type for incoming dueDate which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000


def _to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; precision is cut to milliseconds as BSON stores it."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize dueDate input into a UTC datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, keep it.
    Naive results are read as UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return _to_utc(value)

    if isinstance(value, date):
        return _to_utc(datetime(value.year, value.month, value.day, 0, 0, 0))

    if isinstance(value, str):
        s = value.strip()
        # A trailing 'Z' is not understood by fromisoformat on older interpreters
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return _to_utc(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return _to_utc(datetime(d.year, d.month, d.day, 0, 0, 0))
            except ValueError as e:
                raise ValueError(
                    "Invalid dueDate format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    raise ValueError("Invalid type for dueDate; expected date, datetime, or ISO8601 string.")


# PUBLIC_INTERFACE
class TodoFields(BaseModel):
    """
    Validated, whitelisted fields of a create/replace/update payload.

    Every field is optional; `model_fields_set` records which ones the client
    actually supplied, which is what separates merge (PATCH) from overwrite (PUT).
    An explicit null is only meaningful for `description` and `dueDate`, where it
    clears the value.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, use_enum_values=True)

    title: Optional[str] = Field(default=None, description="Short title for the todo item")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: Optional[bool] = Field(default=None, description="Completion status flag")
    status: Optional[TodoStatus] = Field(default=None, description="Workflow status")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate", description="Due date/time")
    priority: Optional[TodoPriority] = Field(default=None, description="Priority level")
    tags: Optional[List[str]] = Field(default=None, description="Labels attached to the todo")
    followers_count: Optional[int] = Field(default=None, ge=0, alias="followersCount")
    following_count: Optional[int] = Field(default=None, ge=0, alias="followingCount")
    publications_count: Optional[int] = Field(default=None, ge=0, alias="publicationsCount")

    @field_validator(
        "title",
        "completed",
        "status",
        "priority",
        "tags",
        "followers_count",
        "following_count",
        "publications_count",
        mode="before",
    )
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        """Only description and dueDate may be cleared with null."""
        if v is None:
            raise ValueError("may not be null")
        return v

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        Strip whitespace and enforce 1..200 length.
        """
        if v is None:
            return v
        s = v.strip()
        if not (1 <= len(s) <= TITLE_MAX_LENGTH):
            raise ValueError(f"title length must be between 1 and {TITLE_MAX_LENGTH} characters")
        return s

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        s = v.strip()
        if len(s) > DESCRIPTION_MAX_LENGTH:
            raise ValueError(f"description must be at most {DESCRIPTION_MAX_LENGTH} characters")
        return s

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize dueDate from str/date/datetime to datetime.
        """
        return _parse_due_date(v)

    # PUBLIC_INTERFACE
    def to_document(self) -> Dict[str, Any]:
        """Return only the supplied fields, keyed by their stored names."""
        return self.model_dump(by_alias=True, exclude_unset=True)


# PUBLIC_INTERFACE
def sanitize_payload(body: Any) -> Dict[str, Any]:
    """
    Keep only whitelisted keys from a raw request body.

    Unknown keys are dropped silently. A body that is not a JSON object is rejected.
    """
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise BadRequestError("request body must be a JSON object")
    return {key: body[key] for key in WRITABLE_FIELDS if key in body}


def _format_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


# PUBLIC_INTERFACE
def parse_fields(body: Any, require_title: bool = False) -> TodoFields:
    """
    Whitelist and validate a raw payload.

    Args:
        body: Decoded JSON request body.
        require_title: True for create/replace, where a missing or blank title is rejected.

    Returns:
        TodoFields with `model_fields_set` holding the supplied fields.

    Raises:
        BadRequestError: on a missing title or any field constraint violation.
    """
    data = sanitize_payload(body)
    if require_title:
        title = data.get("title")
        if title is None or (isinstance(title, str) and not title.strip()):
            raise BadRequestError("title is required")
    try:
        return TodoFields.model_validate(data)
    except ValidationError as exc:
        raise BadRequestError("Validation failed", errors=_format_errors(exc)) from exc


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "665f1c2ab9e3d2a4c8f01234",
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "completed": False,
                "status": "pending",
                "dueDate": "2025-02-01T00:00:00Z",
                "priority": "medium",
                "tags": ["home"],
                "followersCount": 0,
                "followingCount": 0,
                "publicationsCount": 0,
                "createdAt": "2025-01-25T10:15:30.123000Z",
                "updatedAt": "2025-01-26T09:00:00.000000Z",
            }
        },
    )

    id: str = Field(..., description="Unique identifier of the todo item")
    title: str = Field(..., description="Short title for the todo item")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: bool = Field(..., description="Completion status flag")
    status: TodoStatus = Field(..., description="Workflow status")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate", description="Due date/time")
    priority: TodoPriority = Field(..., description="Priority level")
    tags: List[str] = Field(default_factory=list, description="Labels attached to the todo")
    followers_count: int = Field(default=0, alias="followersCount")
    following_count: int = Field(default=0, alias="followingCount")
    publications_count: int = Field(default=0, alias="publicationsCount")
    created_at: datetime = Field(..., alias="createdAt", description="Creation timestamp")
    updated_at: datetime = Field(..., alias="updatedAt", description="Last update timestamp")


class TodoEnvelope(BaseModel):
    """Envelope for single-item responses."""

    status: str = Field(default="ok", description="'ok', or 'created' after a create")
    data: TodoOut
