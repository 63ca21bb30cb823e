from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, TypedDict


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# PUBLIC_INTERFACE
class TodoEntity(TypedDict, total=False):
    """
    A Todo document as returned by the storage backends.

    Keys use the stored (camelCase) names:
    - id: ObjectId hex string, assigned on create
    - title: Short title (1..200 chars, trimmed)
    - description: Optional detailed description (max 2000 chars, trimmed)
    - completed: Boolean completion flag
    - status: One of TodoStatus values
    - dueDate: Optional due datetime
    - priority: One of TodoPriority values
    - tags: Ordered list of labels
    - followersCount / followingCount / publicationsCount: non-negative counters
    - createdAt: UTC creation timestamp
    - updatedAt: UTC last update timestamp
    """

    id: str
    title: str
    description: Optional[str]
    completed: bool
    status: str
    dueDate: Optional[datetime]
    priority: str
    tags: List[str]
    followersCount: int
    followingCount: int
    publicationsCount: int
    createdAt: datetime
    updatedAt: datetime


# Fields a client may set on create/replace/update; everything else is dropped.
WRITABLE_FIELDS: Tuple[str, ...] = (
    "title",
    "description",
    "completed",
    "status",
    "dueDate",
    "priority",
    "tags",
    "followersCount",
    "followingCount",
    "publicationsCount",
)

# Writable fields that are simply absent when not set.
OPTIONAL_FIELDS: Tuple[str, ...] = ("description", "dueDate")


# PUBLIC_INTERFACE
def todo_defaults() -> Dict[str, Any]:
    """Return a fresh mapping of schema defaults for the non-optional writable fields."""
    return {
        "completed": False,
        "status": TodoStatus.PENDING.value,
        "priority": TodoPriority.MEDIUM.value,
        "tags": [],
        "followersCount": 0,
        "followingCount": 0,
        "publicationsCount": 0,
    }
