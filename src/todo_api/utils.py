from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence, Union


# PUBLIC_INTERFACE
def pagination_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    total: int,
    limit: int,
    offset: int,
) -> Dict[str, Any]:
    """
    Build the standard success envelope for list endpoints.

    Args:
        items: The list/iterable of items for the current page.
        total: Total number of items that match the query (ignoring pagination).
        limit: The limit requested by the client.
        offset: The offset requested by the client.

    Returns:
        Dict with keys: status, data, meta (total, limit, offset).
    """
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    return {
        "status": "ok",
        "data": materialized,
        "meta": {
            "total": int(total),
            "limit": int(limit),
            "offset": int(offset),
        },
    }
