from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId

from .models import OPTIONAL_FIELDS, TodoEntity, todo_defaults
from .schemas import TodoFields
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500
# Largest skip/limit accepted from clients; MongoDB takes these as 64-bit integers.
MAX_PAGINATION_VALUE = 2**31 - 1


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing todos.
    """
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    completed: Optional[bool] = None
    status: Optional[str] = None
    tag: Optional[str] = None
    search: Optional[str] = None

    @property
    def page_size(self) -> int:
        """Number of items actually fetched: the requested limit, capped at MAX_LIMIT."""
        return min(max(self.limit, 0), MAX_LIMIT)


def utcnow() -> datetime:
    """Current UTC time at millisecond precision, the resolution BSON dates keep."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


# PUBLIC_INTERFACE
def new_document(fields: TodoFields, now: datetime) -> Dict[str, Any]:
    """Build the stored document for a create: defaults, then supplied fields, then timestamps."""
    doc = todo_defaults()
    doc.update({k: v for k, v in fields.to_document().items() if v is not None})
    doc["createdAt"] = now
    doc["updatedAt"] = now
    return doc


# PUBLIC_INTERFACE
def replace_changes(fields: TodoFields, now: datetime) -> Tuple[Dict[str, Any], List[str]]:
    """
    Split a full replacement into (fields to set, optional fields to remove).

    Every writable field is overwritten: unsupplied ones revert to their defaults and
    unsupplied optional ones are removed. createdAt is left alone.
    """
    to_set = todo_defaults()
    to_set.update({k: v for k, v in fields.to_document().items() if v is not None})
    to_set["updatedAt"] = now
    to_unset = [name for name in OPTIONAL_FIELDS if name not in to_set]
    return to_set, to_unset


# PUBLIC_INTERFACE
def update_changes(fields: TodoFields, now: datetime) -> Tuple[Dict[str, Any], List[str]]:
    """
    Split a partial update into (fields to set, optional fields to remove).

    Only supplied fields are touched; an explicit null clears an optional field.
    """
    supplied = fields.to_document()
    to_set = {k: v for k, v in supplied.items() if v is not None}
    to_set["updatedAt"] = now
    to_unset = [k for k, v in supplied.items() if v is None]
    return to_set, to_unset


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract repository contract for todo storage backends."""

    async def connect(self) -> None:
        """Make sure the backend is reachable. Must be idempotent."""

    async def close(self) -> None:
        """Release any held connection."""

    @abstractmethod
    async def create(self, fields: TodoFields) -> TodoEntity:
        """Create and return a new TodoEntity."""

    @abstractmethod
    async def get(self, todo_id: str) -> Optional[TodoEntity]:
        """Return a TodoEntity by id, or None if not found."""

    @abstractmethod
    async def replace(self, todo_id: str, fields: TodoFields) -> Optional[TodoEntity]:
        """Overwrite every writable field. Return the result or None if not found."""

    @abstractmethod
    async def update(self, todo_id: str, fields: TodoFields) -> Optional[TodoEntity]:
        """Merge supplied fields. Return the result or None if not found."""

    @abstractmethod
    async def delete(self, todo_id: str) -> Optional[TodoEntity]:
        """Delete a TodoEntity by id. Return its last state, or None if not found."""

    @abstractmethod
    async def list(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        """
        Return a page of TodoEntities and the total count matching filters.
        - Filters by completed, status and tag membership
        - Case-insensitive substring search across title and description
        - Sorted by createdAt descending, then by id descending
        - limit (capped at MAX_LIMIT) / offset
        """


def _copy(item: TodoEntity) -> TodoEntity:
    out = item.copy()
    out["tags"] = list(item.get("tags", []))
    return out


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and local runs.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: dict[str, TodoEntity] = {}

    def _apply(self, todo_id: str, to_set: Dict[str, Any], to_unset: List[str]) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._items.get(todo_id)
            if existing is None:
                return None
            updated = _copy(existing)
            updated.update(to_set)  # type: ignore[typeddict-item]
            for name in to_unset:
                updated.pop(name, None)  # type: ignore[misc]
            self._items[todo_id] = updated
            return _copy(updated)

    async def create(self, fields: TodoFields) -> TodoEntity:
        entity: TodoEntity = new_document(fields, utcnow())  # type: ignore[assignment]
        entity["id"] = str(ObjectId())
        with self._lock:
            self._items[entity["id"]] = entity
        return _copy(entity)

    async def get(self, todo_id: str) -> Optional[TodoEntity]:
        with self._lock:
            item = self._items.get(todo_id)
            return None if item is None else _copy(item)

    async def replace(self, todo_id: str, fields: TodoFields) -> Optional[TodoEntity]:
        return self._apply(todo_id, *replace_changes(fields, utcnow()))

    async def update(self, todo_id: str, fields: TodoFields) -> Optional[TodoEntity]:
        return self._apply(todo_id, *update_changes(fields, utcnow()))

    async def delete(self, todo_id: str) -> Optional[TodoEntity]:
        with self._lock:
            return self._items.pop(todo_id, None)

    async def list(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        with self._lock:
            items: Iterable[TodoEntity] = list(self._items.values())

            if q.completed is not None:
                items = [t for t in items if t["completed"] == q.completed]

            if q.status:
                items = [t for t in items if t["status"] == q.status]

            if q.tag:
                items = [t for t in items if q.tag in t.get("tags", [])]

            if q.search:
                s = q.search.lower()
                def matches(t: TodoEntity) -> bool:
                    title_ok = s in (t.get("title") or "").lower()
                    desc_ok = s in (t.get("description") or "").lower()
                    return title_ok or desc_ok
                items = [t for t in items if matches(t)]

            items = list(items)
            total = len(items)

            items_sorted = sorted(items, key=lambda t: (t["createdAt"], t["id"]), reverse=True)

            start = max(q.offset, 0)
            page = items_sorted[start:start + q.page_size]

            return [_copy(t) for t in page], total


_repository: Optional[Repository] = None


# PUBLIC_INTERFACE
def build_repository(settings: Settings) -> Repository:
    """
    Return a repository for the configured backend.
    - memory: InMemoryRepository
    - mongodb: MongoRepository (connects lazily on first use)
    """
    if settings.persistence_backend == "memory":
        return InMemoryRepository()
    from .db import MongoRepository

    return MongoRepository(settings)


# PUBLIC_INTERFACE
async def get_repository() -> Repository:
    """Return the process-wide repository, creating it on first use."""
    global _repository
    if _repository is None:
        _repository = build_repository(get_settings())
        logger.info("Using %s repository", type(_repository).__name__)
    return _repository


# PUBLIC_INTERFACE
async def close_repository() -> None:
    """Close and forget the process-wide repository, if one was created."""
    global _repository
    if _repository is not None:
        await _repository.close()
        _repository = None
