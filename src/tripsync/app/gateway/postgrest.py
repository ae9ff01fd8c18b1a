"""HTTP gateway for a PostgREST/Supabase-style backend."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence
from urllib.parse import quote

import httpx
import orjson
from httpx import HTTPError

from .base import ChangeHub, ChangeListener, Filter, Order, Row, Unsubscribe
from .errors import GatewayError, GatewayUnavailable, NotFound, RemoteRejection

logger = logging.getLogger(__name__)


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quoted(value: Any) -> str:
    text = _literal(value).replace('"', '\\"')
    return f'"{text}"'


def encode_filter(flt: Filter) -> tuple[str, str]:
    """Return the ``(column, expression)`` query pair for ``flt``."""

    if flt.op == "eq" and flt.value is None:
        return flt.column, "is.null"
    if flt.op in {"eq", "neq"}:
        return flt.column, f"{flt.op}.{_literal(flt.value)}"
    if flt.op == "in":
        joined = ",".join(_quoted(item) for item in flt.value or ())
        return flt.column, f"in.({joined})"
    if flt.op == "is":
        return flt.column, f"is.{_literal(flt.value)}"
    raise ValueError(f"Unsupported filter operator: {flt.op}")


class PostgrestGateway:
    """Talk to ``/rest/v1``, ``/storage/v1`` and ``/auth/v1`` over httpx.

    Push notifications are not read from a socket here; a realtime bridge
    feeds them through :meth:`publish_change`.  Successful writes made
    through this gateway are echoed to subscribers as well.
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        echo_changes: bool = True,
    ) -> None:
        if not url or not key:
            raise GatewayUnavailable("Remote store URL and key are required")
        self.base_url = url.rstrip("/")
        self._key = key
        self._hub = ChangeHub()
        self._echo_changes = echo_changes
        self._client = client or httpx.AsyncClient(
            timeout=timeout, transport=httpx.AsyncHTTPTransport(retries=0)
        )
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def select(
        self,
        table: str,
        *,
        filters: Sequence[Filter] = (),
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        params: list[tuple[str, str]] = [("select", "*")]
        params.extend(encode_filter(flt) for flt in filters)
        if order is not None:
            direction = "desc" if order.descending else "asc"
            params.append(("order", f"{order.column}.{direction}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        payload = await self._request("GET", f"/rest/v1/{table}", params=params)
        return list(payload or [])

    async def select_one(self, table: str, *, filters: Sequence[Filter]) -> Row | None:
        rows = await self.select(table, filters=filters, limit=2)
        if len(rows) > 1:
            raise RemoteRejection(
                "JSON object requested, multiple (or no) rows returned", code="PGRST116"
            )
        return rows[0] if rows else None

    async def insert(
        self, table: str, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> list[Row]:
        body = [dict(rows)] if isinstance(rows, Mapping) else [dict(row) for row in rows]
        payload = await self._request(
            "POST",
            f"/rest/v1/{table}",
            body=body,
            prefer="return=representation",
        )
        self._changed(table)
        return list(payload or [])

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Sequence[Filter]
    ) -> list[Row]:
        if not filters:
            raise RemoteRejection("UPDATE requires a WHERE clause", code="21000")
        payload = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=[encode_filter(flt) for flt in filters],
            body=dict(values),
            prefer="return=representation",
        )
        rows = list(payload or [])
        if rows:
            self._changed(table)
        return rows

    async def delete(self, table: str, *, filters: Sequence[Filter]) -> int:
        if not filters:
            raise RemoteRejection("DELETE requires a WHERE clause", code="21000")
        payload = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=[encode_filter(flt) for flt in filters],
            prefer="return=representation",
        )
        removed = len(payload or [])
        if removed:
            self._changed(table)
        return removed

    async def upsert(
        self, table: str, row: Mapping[str, Any], *, on_conflict: Sequence[str]
    ) -> Row:
        payload = await self._request(
            "POST",
            f"/rest/v1/{table}",
            params=[("on_conflict", ",".join(on_conflict))],
            body=[dict(row)],
            prefer="resolution=merge-duplicates,return=representation",
        )
        rows = list(payload or [])
        if not rows:
            raise NotFound(f"Upsert into {table} returned no row")
        self._changed(table)
        return rows[0]

    async def rpc(self, name: str, params: Mapping[str, Any]) -> Any:
        return await self._request("POST", f"/rest/v1/rpc/{name}", body=dict(params))

    def subscribe(self, table: str, listener: ChangeListener) -> Unsubscribe:
        return self._hub.subscribe(table, listener)

    def publish_change(self, table: str) -> None:
        self._hub.publish(table)

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> str:
        url = f"{self.base_url}/storage/v1/object/{bucket}/{quote(path)}"
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "x-upsert": "true",
        }
        try:
            resp = await self._client.post(url, content=content, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise self._rejection(exc.response) from exc
        except HTTPError as exc:
            raise GatewayError(f"HTTP error: {exc}") from exc
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    async def send_password_reset(
        self, email: str, *, redirect_to: str | None = None
    ) -> None:
        params = [("redirect_to", redirect_to)] if redirect_to else None
        await self._request("POST", "/auth/v1/recover", params=params, body={"email": email})

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Sequence[tuple[str, str]] | None = None,
        body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        content = orjson.dumps(body) if body is not None else None
        try:
            resp = await self._client.request(
                method,
                f"{self.base_url}{path}",
                params=list(params or ()),
                content=content,
                headers=headers,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise self._rejection(exc.response) from exc
        except HTTPError as exc:
            logger.warning("Remote store request %s %s failed: %s", method, path, exc)
            raise GatewayError(f"HTTP error: {exc}") from exc
        if not resp.content:
            return None
        try:
            return orjson.loads(resp.content)
        except orjson.JSONDecodeError as exc:
            raise GatewayError("Remote store returned invalid JSON") from exc

    @staticmethod
    def _rejection(response: httpx.Response) -> RemoteRejection:
        status_line = f"{response.status_code} {response.reason_phrase or ''}".strip()
        code: str | None = None
        message = status_line
        try:
            detail = orjson.loads(response.content) if response.content else None
        except orjson.JSONDecodeError:
            detail = None
        if isinstance(detail, Mapping):
            code = str(detail.get("code")) if detail.get("code") is not None else None
            message = str(
                detail.get("message") or detail.get("msg") or detail.get("error") or message
            )
        return RemoteRejection(message, code=code)

    def _changed(self, table: str) -> None:
        if self._echo_changes:
            self._hub.publish(table)


__all__ = ["PostgrestGateway", "encode_filter"]
