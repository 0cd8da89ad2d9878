"""Canonical cache keys derived from filter selections.

A query key is an immutable tuple ``(entity_kind, params)``. For todo lists the
params string is exactly the URL query string sent to the API, built with a
fixed field order and sorted, de-duplicated values so that logically equal
filter selections always produce the same key.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import ValidationError
from .models import Todo

QueryKey = Tuple[str, ...]

TODOS = "todos"
TODO = "todo"
USERS = "users"
MY_TODOS = "my-todos"

# Wire order of list filter parameters.
FILTER_FIELDS = ("status", "priority", "assignedTo", "starred")


@dataclass
class FilterState:
    """Filter selection owned by a view. Never persisted."""

    status: List[str] = field(default_factory=list)
    priority: List[str] = field(default_factory=list)
    assigned_to: List[int] = field(default_factory=list)
    starred: Optional[bool] = None
    search_text: str = ""

    @classmethod
    def from_dict(cls, data: Dict) -> "FilterState":
        """Build from a view's dict (accepts ``assignedTo`` and ``search``)."""
        return cls(
            status=list(data.get("status") or []),
            priority=list(data.get("priority") or []),
            assigned_to=list(data.get("assigned_to", data.get("assignedTo")) or []),
            starred=data.get("starred"),
            search_text=data.get("search_text", data.get("search")) or "",
        )


def _enum_values(values: Iterable[Union[str, Enum]]) -> List[str]:
    normalized = set()
    for value in values:
        if isinstance(value, Enum):
            value = value.value
        value = str(value).strip().upper()
        if value:
            normalized.add(value)
    return sorted(normalized)


def _user_ids(values: Iterable[Union[int, str]]) -> List[int]:
    ids = set()
    for value in values:
        try:
            ids.add(int(value))
        except (TypeError, ValueError) as e:
            raise ValidationError(
                "Invalid assignee filter",
                errors=[{"loc": ("assignedTo",), "msg": f"not a user id: {value!r}"}],
            ) from e
    return sorted(ids)


def to_query_params(filters: Optional[FilterState]) -> Dict[str, str]:
    """Encode server-side filters as API query parameters.

    Multi-valued fields are comma-joined; empty fields are omitted and
    ``starred`` is sent only as ``"true"``.

    Args:
        filters: Filter selection, or None for no filtering

    Returns:
        Ordered mapping of parameter name to encoded value

    Raises:
        ValidationError: If an assignee id is not an integer
    """
    params: Dict[str, str] = {}
    if filters is None:
        return params

    status = _enum_values(filters.status)
    if status:
        params["status"] = ",".join(status)

    priority = _enum_values(filters.priority)
    if priority:
        params["priority"] = ",".join(priority)

    assigned = _user_ids(filters.assigned_to)
    if assigned:
        params["assignedTo"] = ",".join(str(user_id) for user_id in assigned)

    if filters.starred is True:
        params["starred"] = "true"

    return params


def encode_params(params: Dict[str, str]) -> str:
    """Join parameters in the fixed field order as ``name=value&...``."""
    return "&".join(
        f"{name}={params[name]}" for name in FILTER_FIELDS if name in params
    )


def to_key(filters: Optional[FilterState]) -> QueryKey:
    """Derive the todo-list cache key for a filter selection.

    Search text is applied on the client (see ``apply_search``) and does not
    participate in the key.

    Args:
        filters: Filter selection, or None for no filtering

    Returns:
        ``("todos", "<canonical query string>")``

    Raises:
        ValidationError: If an assignee id is not an integer
    """
    return (TODOS, encode_params(to_query_params(filters)))


def todo_list_prefix() -> QueryKey:
    return (TODOS,)


def todo_detail_key(todo_id: int) -> QueryKey:
    return (TODO, f"id={int(todo_id)}")


def users_key() -> QueryKey:
    return (USERS, "")


def my_todos_key() -> QueryKey:
    return (MY_TODOS, "")


def apply_search(todos: Sequence[Todo], text: str) -> List[Todo]:
    """Filter todos by free-text search on title and description."""
    if not text:
        return list(todos)
    return [todo for todo in todos if todo.matches_search(text)]
