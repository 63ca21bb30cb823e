from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, Field

from ..errors import TodoNotFoundError
from ..models import TodoEntity
from ..repositories import DEFAULT_LIMIT, MAX_LIMIT, MAX_PAGINATION_VALUE, ListQuery, Repository, get_repository
from ..schemas import TodoEnvelope, TodoOut, parse_fields
from ..utils import pagination_envelope


async def ensure_connection(repo: Repository = Depends(get_repository)) -> None:
    """
    Router-level dependency: make sure the storage connection exists before any handler runs.
    Connection failures propagate and fail the request.
    """
    await repo.connect()


router = APIRouter(
    prefix="/todos",
    tags=["todos"],
    dependencies=[Depends(ensure_connection)],
)

_NOT_FOUND = {"description": "Todo not found"}
_BAD_REQUEST = {"description": "Validation error"}


class ListMeta(BaseModel):
    total: int = Field(..., description="Total number of items matching the query")
    limit: int = Field(..., description="Limit requested by the client")
    offset: int = Field(..., description="Offset requested by the client")


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    status: str = Field(default="ok")
    data: List[TodoOut] = Field(..., description="Page of Todo items")
    meta: ListMeta


def _found(item: Optional[TodoEntity], todo_id: str) -> TodoOut:
    if item is None:
        raise TodoNotFoundError(todo_id)
    return TodoOut(**item)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=PaginationEnvelope,
    summary="List Todos",
    description=(
        "List todos with optional filters and pagination, newest first.\n\n"
        "Query parameters:\n"
        f"- limit: max number of items to return (default {DEFAULT_LIMIT}, capped at {MAX_LIMIT})\n"
        "- offset: number of items to skip (>=0)\n"
        "- completed: 'true' for completed todos; any other value selects open ones\n"
        "- status: filter by workflow status; an unknown value matches nothing\n"
        "- tag: only todos carrying this tag\n"
        "- q: case-insensitive search in title/description"
    ),
    responses={400: {"description": "Invalid query parameters"}},
)
async def list_todos(
    completed: Optional[str] = Query(None, description="'true' or 'false'"),
    todo_status: Optional[str] = Query(None, alias="status", description="Filter by status"),
    tag: Optional[str] = Query(None, description="Only todos carrying this tag"),
    q: Optional[str] = Query(None, description="Search text for title/description"),
    limit: int = Query(
        DEFAULT_LIMIT, ge=0, le=MAX_PAGINATION_VALUE, description="Maximum number of items to return"
    ),
    offset: int = Query(0, ge=0, le=MAX_PAGINATION_VALUE, description="Number of items to skip"),
    repo: Repository = Depends(get_repository),
) -> PaginationEnvelope:
    """
    List todos with pagination and filters.
    """
    query = ListQuery(
        limit=limit,
        offset=offset,
        completed=None if completed is None else completed == "true",
        status=todo_status or None,
        tag=tag or None,
        search=q.strip() if q and q.strip() else None,
    )
    items, total = await repo.list(query)
    envelope = pagination_envelope(
        items=[TodoOut(**it) for it in items],
        total=total,
        limit=limit,
        offset=offset,
    )
    return PaginationEnvelope(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoEnvelope,
    summary="Get Todo",
    responses={404: _NOT_FOUND},
)
async def get_todo(todo_id: str, repo: Repository = Depends(get_repository)) -> TodoEnvelope:
    """
    Retrieve a single Todo item by its ID.
    """
    return TodoEnvelope(data=_found(await repo.get(todo_id), todo_id))


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=TodoEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item. Unknown fields are ignored.",
    responses={400: _BAD_REQUEST},
)
async def create_todo(
    payload: Any = Body(None), repo: Repository = Depends(get_repository)
) -> TodoEnvelope:
    """
    Create a new Todo.
    """
    fields = parse_fields(payload, require_title=True)
    created = await repo.create(fields)
    return TodoEnvelope(status="created", data=TodoOut(**created))


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}",
    response_model=TodoEnvelope,
    summary="Replace Todo",
    description=(
        "Replace an existing Todo item. Any writable field omitted is reset to its default, "
        "or removed if it has none."
    ),
    responses={400: _BAD_REQUEST, 404: _NOT_FOUND},
)
async def replace_todo(
    todo_id: str, payload: Any = Body(None), repo: Repository = Depends(get_repository)
) -> TodoEnvelope:
    """
    Full replace of a Todo item.
    """
    fields = parse_fields(payload, require_title=True)
    return TodoEnvelope(data=_found(await repo.replace(todo_id, fields), todo_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoEnvelope,
    summary="Update Todo",
    description="Partially update fields of a Todo item; omitted fields keep their values.",
    responses={400: _BAD_REQUEST, 404: _NOT_FOUND},
)
async def update_todo(
    todo_id: str, payload: Any = Body(None), repo: Repository = Depends(get_repository)
) -> TodoEnvelope:
    """
    Partial update of a Todo item.
    """
    fields = parse_fields(payload)
    return TodoEnvelope(data=_found(await repo.update(todo_id, fields), todo_id))


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    response_model=TodoEnvelope,
    summary="Delete Todo",
    description="Delete a Todo item by ID and return its last state.",
    responses={404: _NOT_FOUND},
)
async def delete_todo(todo_id: str, repo: Repository = Depends(get_repository)) -> TodoEnvelope:
    """
    Delete a Todo. Returns 200 with the deleted item, 404 if not found.
    """
    return TodoEnvelope(data=_found(await repo.delete(todo_id), todo_id))
