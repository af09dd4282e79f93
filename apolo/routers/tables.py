"""Tabular CRUD over the remote tables, consumed by ``HttpTableStore``.

Query string grammar:
    col=value          equality
    col=in.a,b,c       membership
    col=is.null        null check
    order=col.asc      ordering (repeatable, .desc for descending)
    limit=n
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status

from ..models import Profile
from ..remote import RemoteError, SQLTableStore, UniqueViolation, UnknownTable
from .auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

_store: Optional[SQLTableStore] = None


def get_table_store() -> SQLTableStore:
    """Dependency returning the process-wide table store."""
    global _store
    if _store is None:
        _store = SQLTableStore()
    return _store


def _parse_query(request: Request) -> Tuple[Dict[str, Any], List[Tuple[str, bool]], Optional[int]]:
    filters: Dict[str, Any] = {}
    order: List[Tuple[str, bool]] = []
    limit: Optional[int] = None
    for key, value in request.query_params.multi_items():
        if key == "order":
            column, _, direction = value.rpartition(".")
            if not column or direction not in ("asc", "desc"):
                raise HTTPException(status_code=422, detail="Invalid order")
            order.append((column, direction == "desc"))
        elif key == "limit":
            try:
                limit = int(value)
            except ValueError:
                raise HTTPException(status_code=422, detail="Invalid limit")
        elif value.startswith("in."):
            filters[key] = [item for item in value[3:].split(",") if item]
        elif value == "is.null":
            filters[key] = None
        else:
            filters[key] = value
    return filters, order, limit


def _http_error(exc: RemoteError) -> HTTPException:
    detail = {"code": exc.code, "message": exc.message}
    if isinstance(exc, UniqueViolation):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(exc, UnknownTable):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if exc.code in ("42703", "22P02", "21000"):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    logger.error("Remote store error", exc_info=exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


@router.get("/rest/{table}")
async def select_rows(
    table: str,
    request: Request,
    current_user: Profile = Depends(get_current_user),
    store: SQLTableStore = Depends(get_table_store),
):
    """Select rows matching the query-string filters."""
    filters, order, limit = _parse_query(request)
    try:
        return await store.select(table, filters, order, limit)
    except RemoteError as exc:
        raise _http_error(exc)


@router.post("/rest/{table}", status_code=status.HTTP_201_CREATED)
async def insert_row(
    table: str,
    row: Dict[str, Any] = Body(...),
    current_user: Profile = Depends(get_current_user),
    store: SQLTableStore = Depends(get_table_store),
):
    """Insert one row and return it as stored."""
    try:
        return await store.insert(table, row)
    except RemoteError as exc:
        raise _http_error(exc)


@router.patch("/rest/{table}", status_code=status.HTTP_204_NO_CONTENT)
async def update_rows(
    table: str,
    request: Request,
    values: Dict[str, Any] = Body(...),
    current_user: Profile = Depends(get_current_user),
    store: SQLTableStore = Depends(get_table_store),
):
    """Update every row matching the filters."""
    filters, _, _ = _parse_query(request)
    if not filters:
        raise HTTPException(status_code=400, detail="Update requires a filter")
    try:
        await store.update(table, filters, values)
    except RemoteError as exc:
        raise _http_error(exc)


@router.delete("/rest/{table}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rows(
    table: str,
    request: Request,
    current_user: Profile = Depends(get_current_user),
    store: SQLTableStore = Depends(get_table_store),
):
    """Delete every row matching the filters."""
    filters, _, _ = _parse_query(request)
    if not filters:
        raise HTTPException(status_code=400, detail="Delete requires a filter")
    try:
        await store.delete(table, filters)
    except RemoteError as exc:
        raise _http_error(exc)
