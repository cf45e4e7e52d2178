"""Paginated per-chain log scanner."""

import asyncio
from collections.abc import AsyncIterator

import structlog

from ..core.interfaces import LogSource
from ..core.types import ChainInfo, LogFilter, RawLog

logger = structlog.get_logger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
# keccak256("Approval(address,address,uint256)")
APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

MAX_LOGS_PER_REQUEST = 100_000

TRANSFER_FILTER = LogFilter(topics=((TRANSFER_TOPIC,),))


def topic_to_address(topic: str) -> str:
    """Decode an address from a 32-byte indexed topic."""
    return "0x" + topic[-40:].lower()


def address_to_topic(address: str) -> str:
    """Encode an address as a 32-byte indexed topic."""
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def lookback_blocks(chain: ChainInfo, days: float) -> int:
    """Number of blocks produced by a chain over ``days``."""
    return int((days * 24 * 3600) / chain.block_time)


def scan_targets(chains: list[ChainInfo], endpoint: str | None) -> list[ChainInfo]:
    """Chains covered by a scan; an alternate endpoint serves only the first."""
    return chains[:1] if endpoint is not None else list(chains)


class EventScanner:
    """Pulls logs of one chain page by page under a fixed per-request ceiling."""

    def __init__(
        self,
        source: LogSource,
        max_logs_per_request: int = MAX_LOGS_PER_REQUEST,
        request_delay: float = 0.1,
    ) -> None:
        """Initialize event scanner.

        Args:
            source: Scanning collaborator
            max_logs_per_request: Log ceiling of one request
            request_delay: Pause between consecutive requests in seconds
        """
        self.source = source
        self.max_logs_per_request = max_logs_per_request
        self.request_delay = request_delay

    async def block_range(
        self,
        chain: ChainInfo,
        days: float | None = None,
        from_block: int | None = None,
        to_block: int | None = None,
        endpoint: str | None = None,
    ) -> tuple[int, int | None]:
        """Resolve the block range of a scan.

        An explicit ``from_block`` wins; otherwise the range starts ``days``
        worth of blocks below the chain head.
        """
        if from_block is not None:
            return max(0, from_block), to_block
        if days is None:
            raise ValueError("Either days or from_block is required")

        head = await self.source.get_height(chain, endpoint=endpoint)
        start = max(0, head - lookback_blocks(chain, days))
        return start, to_block

    async def scan(
        self,
        chain: ChainInfo,
        filters: list[LogFilter],
        days: float | None = None,
        from_block: int | None = None,
        to_block: int | None = None,
        endpoint: str | None = None,
    ) -> AsyncIterator[RawLog]:
        """Yield every log matching ``filters`` in the resolved range.

        Records without an address or topics are dropped. The generator is
        single-use.
        """
        start, end = await self.block_range(
            chain, days=days, from_block=from_block, to_block=to_block, endpoint=endpoint
        )
        current = start
        pages = 0
        dropped = 0

        while True:
            page = await self.source.query_logs(
                chain,
                current,
                end,
                filters,
                max_logs=self.max_logs_per_request,
                endpoint=endpoint,
            )
            pages += 1

            for log in page.logs:
                if not log.address or not log.topics:
                    dropped += 1
                    continue
                yield log

            if len(page.logs) < self.max_logs_per_request:
                break
            if end is not None and page.next_block >= end:
                break
            if page.next_block <= current:
                # upstream reported no progress
                break

            current = page.next_block
            await asyncio.sleep(self.request_delay)

        logger.debug(
            "Scan finished",
            chain=chain.name,
            from_block=start,
            to_block=end,
            pages=pages,
            dropped=dropped,
        )
