"""``TableStore`` speaking to the apolo service's ``/rest`` endpoints."""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import TypeAdapter

from ..config import API_BASE_URL
from .base import Filters, Order, RemoteError, Row, TableStore, UniqueViolation, UNIQUE_VIOLATION

logger = logging.getLogger(__name__)

_json = TypeAdapter(Any)


def to_json(value: Any) -> Any:
    """Plain JSON-ready data (datetimes as ISO strings) for a request body."""
    return _json.dump_python(value, mode="json")


def encode_filters(filters: Optional[Filters]) -> List[Tuple[str, str]]:
    params = []
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            params.append((column, "in." + ",".join(str(v) for v in value)))
        elif value is None:
            params.append((column, "is.null"))
        elif isinstance(value, bool):
            params.append((column, "true" if value else "false"))
        else:
            params.append((column, str(value)))
    return params


def encode_order(order: Optional[Order]) -> List[Tuple[str, str]]:
    return [("order", f"{column}.{'desc' if descending else 'asc'}") for column, descending in order or ()]


class HttpTableStore(TableStore):
    def __init__(self, base_url: str = API_BASE_URL, token: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, channel=None):
        super().__init__(channel)
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=10.0)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, table: str, params=None, json: Any = None) -> httpx.Response:
        try:
            response = await self.client.request(method, f"/rest/{table}", params=params, json=json)
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} /rest/{table} failed: {exc}") from exc
        logger.debug("%s /rest/%s -> %d", method, table, response.status_code, extra={"table": table})

        if response.status_code >= 400:
            detail: Dict[str, Any] = {}
            try:
                body = response.json()
                detail = body.get("detail", body) if isinstance(body, dict) else {}
            except ValueError:
                pass
            if not isinstance(detail, dict):
                detail = {"message": str(detail)}
            code = detail.get("code")
            message = detail.get("message") or response.text
            if code == UNIQUE_VIOLATION:
                raise UniqueViolation(message)
            raise RemoteError(message, code=code)
        return response

    async def select(self, table: str, filters: Optional[Filters] = None,
                     order: Optional[Order] = None, limit: Optional[int] = None) -> List[Row]:
        params = encode_filters(filters) + encode_order(order)
        if limit is not None:
            params.append(("limit", str(limit)))
        response = await self._request("GET", table, params=params)
        return response.json()

    async def insert(self, table: str, row: Row) -> Row:
        response = await self._request("POST", table, json=to_json(row))
        inserted = response.json()
        self.channel.publish(table, inserted)
        return inserted

    async def update(self, table: str, filters: Filters, values: Row) -> None:
        if not values:
            return
        await self._request("PATCH", table, params=encode_filters(filters), json=to_json(values))

    async def delete(self, table: str, filters: Filters) -> None:
        await self._request("DELETE", table, params=encode_filters(filters))
