"""REST backends for the hosted Postgres (PostgREST) and storage APIs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from mortgagepro.backends.query import AnyOf, Filter, TableQuery
from mortgagepro.errors import BackendError, StorageError

if TYPE_CHECKING:
    from mortgagepro.config import Settings

_METHODS = {"select": "GET", "insert": "POST", "update": "PATCH", "delete": "DELETE"}


def _render_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: Any) -> str:
    text = _render_value(value)
    if any(ch in text for ch in ',()"'):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _render_filter(f: Filter) -> str:
    if f.op == "in":
        return f"in.({','.join(_quote(v) for v in f.value)})"
    if f.op == "ilike":
        return f"ilike.{f.value.replace('%', '*')}"
    return f"{f.op}.{_render_value(f.value)}"


def build_params(query: TableQuery) -> list[tuple[str, str]]:
    """Translate a query into PostgREST query-string parameters."""
    params: list[tuple[str, str]] = []
    if query.action == "select" or query.returning:
        params.append(("select", query.columns))
    for condition in query.filters:
        if isinstance(condition, AnyOf):
            inner = ",".join(
                f"{f.column}.{_render_filter(f)}" for f in condition.filters
            )
            params.append(("or", f"({inner})"))
        else:
            params.append((condition.column, _render_filter(condition)))
    if query.orders:
        params.append(
            ("order", ",".join(f"{c}.{'desc' if d else 'asc'}" for c, d in query.orders))
        )
    if query.row_limit is not None:
        params.append(("limit", str(query.row_limit)))
    return params


def _error_from(response: httpx.Response, error_cls: type[BackendError]) -> BackendError:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    return error_cls.from_payload(payload, response.status_code)


class RestBackend:
    """Async data backend talking to a PostgREST endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {access_token or api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings, access_token: str | None = None) -> RestBackend:
        return cls(
            settings.backend_url,
            settings.backend_key,
            timeout=settings.request_timeout,
            access_token=access_token,
        )

    def table(self, name: str) -> TableQuery:
        """Start a query against a table."""
        return TableQuery(self, name)

    async def execute(self, query: TableQuery) -> Any:
        """Send a built query and decode the response."""
        headers: dict[str, str] = {}
        if query.action != "select":
            headers["Prefer"] = (
                "return=representation" if query.returning else "return=minimal"
            )
        if query.is_single:
            headers["Accept"] = "application/vnd.pgrst.object+json"

        body: Any = None
        if query.action == "insert":
            body = query.values
        elif query.action == "update":
            body = query.values[0] if query.values else {}

        response = await self._client.request(
            _METHODS[query.action],
            f"/rest/v1/{query.table}",
            params=build_params(query),
            json=body,
            headers=headers,
        )
        if not response.is_success:
            raise _error_from(response, BackendError)
        if query.action != "select" and not query.returning:
            return []
        if not response.content:
            return None if query.is_single else []
        return response.json()

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class RestStorage:
    """Async object storage talking to the storage REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {access_token or api_key}",
            },
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings, access_token: str | None = None) -> RestStorage:
        return cls(
            settings.backend_url,
            settings.backend_key,
            timeout=settings.request_timeout,
            access_token=access_token,
        )

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, endpoint, **kwargs)
        if not response.is_success:
            raise _error_from(response, StorageError)
        return response

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> str:
        """Store a file and return its path."""
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
            },
        )
        return path

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """Return a temporary URL for a stored file."""
        response = await self._request(
            "POST",
            f"/storage/v1/object/sign/{bucket}/{path}",
            json={"expiresIn": expires_in},
        )
        signed = response.json().get("signedURL")
        if not signed:
            raise StorageError("Signed URL missing from response")
        return f"{self._base_url}/storage/v1{signed}"

    async def download(self, bucket: str, path: str) -> bytes:
        """Return the bytes of a stored file."""
        response = await self._request("GET", f"/storage/v1/object/{bucket}/{path}")
        return response.content

    async def remove(self, bucket: str, paths: list[str]) -> None:
        """Delete stored files."""
        await self._request(
            "DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": paths}
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
