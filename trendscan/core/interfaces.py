"""Core interfaces for the token scoring pipeline."""

from typing import Protocol, runtime_checkable

from .types import CachedTokenRecord, ChainInfo, LogFilter, LogPage, TokenMetadata


class LogSource(Protocol):
    """Bounded log query against a chain's event-scanning collaborator."""

    async def get_height(self, chain: ChainInfo, endpoint: str | None = None) -> int:
        """Return the latest block available for the chain."""
        ...

    async def query_logs(
        self,
        chain: ChainInfo,
        from_block: int,
        to_block: int | None,
        filters: list[LogFilter],
        max_logs: int = 100_000,
        endpoint: str | None = None,
    ) -> LogPage:
        """Fetch at most ``max_logs`` logs starting at ``from_block``."""
        ...


class MetadataSource(Protocol):
    """Token metadata and price lookup collaborator."""

    async def fetch(self, address: str) -> TokenMetadata | None:
        """Return metadata for a token, or None when the token is unknown."""
        ...


@runtime_checkable
class TokenStore(Protocol):
    """Durable key-value store of the latest scored record per token."""

    async def get(self, address: str) -> CachedTokenRecord | None:
        """Load the record stored under a token address."""
        ...

    async def set(self, record: CachedTokenRecord) -> None:
        """Overwrite the record stored under ``record.address``."""
        ...

    async def exists(self, address: str) -> bool:
        """Check whether a record is stored under a token address."""
        ...

    async def list_keys(self) -> list[str]:
        """List every stored token address."""
        ...

    async def list_records(self) -> list[CachedTokenRecord]:
        """Load every stored record."""
        ...

    async def close(self) -> None:
        """Release store resources."""
        ...
