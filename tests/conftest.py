"""Shared fixtures for scanner-driven tests."""

from collections.abc import Callable

import pytest

from trendscan.core.types import ChainInfo, LogFilter, LogPage, RawLog

TRANSFER = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
APPROVAL = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"


def _topic(address: str) -> str:
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


class FakeLogSource:
    """In-memory LogSource serving canned pages per chain."""

    def __init__(self, height: int = 1_000_000) -> None:
        self.height = height
        self.pages: dict[int, list[LogPage]] = {}
        self.handler: Callable[..., LogPage] | None = None
        self.queries: list[dict] = []
        self.height_calls: list[tuple[int, str | None]] = []

    async def get_height(self, chain: ChainInfo, endpoint: str | None = None) -> int:
        self.height_calls.append((chain.chain_id, endpoint))
        return self.height

    async def query_logs(
        self,
        chain: ChainInfo,
        from_block: int,
        to_block: int | None,
        filters: list[LogFilter],
        max_logs: int = 100_000,
        endpoint: str | None = None,
    ) -> LogPage:
        self.queries.append(
            {
                "chain_id": chain.chain_id,
                "from_block": from_block,
                "to_block": to_block,
                "filters": filters,
                "max_logs": max_logs,
                "endpoint": endpoint,
            }
        )
        if self.handler is not None:
            return self.handler(chain, from_block, to_block, filters)

        pages = self.pages.get(chain.chain_id)
        if pages:
            return pages.pop(0)
        return LogPage(logs=[], next_block=from_block)


@pytest.fixture
def log_source():
    """Fake scanning collaborator."""
    return FakeLogSource()


@pytest.fixture
def make_log():
    """Factory for RawLog records."""

    def _make_log(
        address: str = "0x" + "a" * 40,
        block: int = 100,
        timestamp: int = 1_700_000_000,
        chain_id: int = 1,
        topics: tuple[str, ...] | None = None,
        data: str = "0x",
        tx_hash: str = "0x" + "f" * 64,
        tx_index: int = 0,
        log_index: int = 0,
    ) -> RawLog:
        return RawLog(
            chain_id=chain_id,
            block_number=block,
            timestamp=timestamp,
            tx_hash=tx_hash,
            tx_index=tx_index,
            log_index=log_index,
            address=address,
            topics=topics if topics is not None else (TRANSFER,),
            data=data,
        )

    return _make_log


@pytest.fixture
def make_transfer(make_log):
    """Factory for Transfer/Approval logs between two addresses."""

    def _make_transfer(
        sender: str,
        receiver: str,
        value: int,
        token: str = "0x" + "a" * 40,
        timestamp: int = 1_700_000_000,
        block: int = 100,
        chain_id: int = 1,
        event: str = TRANSFER,
    ) -> RawLog:
        return make_log(
            address=token,
            block=block,
            timestamp=timestamp,
            chain_id=chain_id,
            topics=(event, _topic(sender), _topic(receiver)),
            data="0x" + format(value, "064x"),
        )

    return _make_transfer
