"""Pydantic models for API data and request payloads.

Wire field names are camelCase; Python attributes are snake_case. Models accept
either spelling on input and emit camelCase when serialized for the API.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .utils.datetime import ensure_aware, now_utc, parse_iso_datetime, to_iso_string


class Priority(str, Enum):
    """Task priority levels."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TodoStatus(str, Enum):
    """Task status states."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ApiModel(BaseModel):
    """Base model for camelCase API payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ============================================================================
# Users
# ============================================================================

class User(ApiModel):
    """A user as returned by the API; read-only on the client."""
    id: int
    username: str
    email: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# Todos
# ============================================================================

class Subtask(ApiModel):
    """Checklist item attached to a todo."""
    id: Optional[int] = None
    title: str
    completed: bool = False
    todo_id: Optional[int] = None


class Todo(ApiModel):
    """A todo item. The API owns ``id`` and the timestamps."""
    id: int
    title: str
    description: Optional[str] = None
    due_date: datetime
    reminder_date: Optional[datetime] = None
    status: TodoStatus = TodoStatus.PENDING
    priority: Priority = Priority.MEDIUM
    starred: bool = False
    creator_id: Optional[int] = None
    assigned_user_ids: List[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("assignedTo", "assignedUserIds", "assigned_user_ids"),
    )
    subtasks: List[Subtask] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("assigned_user_ids", mode="before")
    @classmethod
    def collect_user_ids(cls, value):
        """The API embeds assigned users as objects; keep only their ids."""
        if value is None:
            return []
        ids = []
        for item in value:
            if isinstance(item, dict):
                ids.append(item["id"])
            else:
                ids.append(item)
        return ids

    @field_validator("due_date", "reminder_date", "created_at", "updated_at")
    @classmethod
    def make_aware(cls, value):
        return ensure_aware(value)

    def matches_search(self, text: str) -> bool:
        """Case-insensitive substring match on title and description."""
        needle = text.lower()
        if needle in self.title.lower():
            return True
        return bool(self.description and needle in self.description.lower())


class SubtaskInput(ApiModel):
    id: Optional[int] = None
    title: str = Field(..., min_length=1)
    completed: Optional[bool] = None


def _clean_title(value):
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("Title cannot be blank")
    return value


class CreateTodoRequest(ApiModel):
    """Payload for creating a todo."""
    title: str = Field(..., max_length=500)
    description: Optional[str] = None
    due_date: datetime
    reminder_date: Optional[datetime] = None
    status: Optional[TodoStatus] = None
    priority: Optional[Priority] = None
    starred: Optional[bool] = None
    assigned_to: Optional[List[int]] = None
    subtasks: Optional[List[SubtaskInput]] = None

    @field_validator("title")
    @classmethod
    def clean_title(cls, value):
        return _clean_title(value)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for the API, dropping absent optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UpdateTodoRequest(ApiModel):
    """Partial update for a todo; only fields explicitly given are sent."""
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    reminder_date: Optional[datetime] = None
    status: Optional[TodoStatus] = None
    priority: Optional[Priority] = None
    starred: Optional[bool] = None
    assigned_to: Optional[List[int]] = None
    subtasks: Optional[List[SubtaskInput]] = None

    @field_validator("title")
    @classmethod
    def clean_title(cls, value):
        return _clean_title(value)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


def validate_payload(model_cls, payload):
    """Validate a create/update payload before it reaches the network.

    Args:
        model_cls: Request model class
        payload: Model instance or mapping of fields

    Returns:
        Validated model instance

    Raises:
        ValidationError: If the payload is invalid
    """
    if isinstance(payload, model_cls):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model_cls.__name__} payload", errors=e.errors()) from e


# ============================================================================
# Envelopes
# ============================================================================

class ApiEnvelope(BaseModel):
    """Standard success envelope ``{message, data, status}``."""
    message: str = ""
    data: Any = None
    status: Optional[int] = None


class AuthResult(ApiModel):
    """``data`` of a successful login or registration."""
    user: User
    token: str


# ============================================================================
# Session
# ============================================================================

class Session(BaseModel):
    """Authenticated identity plus credential token."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    email: str
    token: str = Field(..., min_length=1)
    issued_at: datetime = Field(default_factory=now_utc)

    @classmethod
    def from_auth_result(cls, result: AuthResult) -> "Session":
        return cls(
            user_id=str(result.user.id),
            display_name=result.user.username,
            email=result.user.email,
            token=result.token,
        )

    def user_payload(self) -> Dict[str, Any]:
        """User object persisted next to the token."""
        return {
            "id": self.user_id,
            "name": self.display_name,
            "email": self.email,
            "issuedAt": to_iso_string(self.issued_at),
        }

    @classmethod
    def from_user_payload(cls, token: str, payload: Dict[str, Any]) -> "Session":
        """Rebuild a session from its persisted parts.

        Raises:
            KeyError, TypeError, ValueError: If the payload is malformed
        """
        if not isinstance(payload, dict):
            raise TypeError(f"Expected a user object, got {type(payload).__name__}")
        issued_at = parse_iso_datetime(payload.get("issuedAt")) or now_utc()
        return cls(
            user_id=str(payload["id"]),
            display_name=payload["name"],
            email=payload["email"],
            token=token,
            issued_at=issued_at,
        )
