"""Backend protocols for relational data and object storage."""

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from mortgagepro.backends.query import TableQuery


@runtime_checkable
class DataBackend(Protocol):
    """Relational data access (select/insert/update/delete on tables)."""

    def table(self, name: str) -> "TableQuery":
        """Start a query against a table."""
        ...

    async def execute(self, query: "TableQuery") -> Any:
        """Run a built query; returns a row list, or one row for single()."""
        ...

    async def aclose(self) -> None:
        """Release connections."""
        ...


@runtime_checkable
class StorageBackend(Protocol):
    """Object storage for uploaded documents."""

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
        ...

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """Return a temporary URL for a stored file."""
        ...

    async def download(self, bucket: str, path: str) -> bytes:
        """Return the bytes of a stored file."""
        ...

    async def remove(self, bucket: str, paths: list[str]) -> None:
        """Delete stored files."""
        ...

    async def aclose(self) -> None:
        """Release connections."""
        ...
