"""Multi-chain discovery of newly deployed tokens."""

import asyncio
import time
from collections.abc import Callable

import structlog

from ..core.types import ChainInfo, Token
from .scanner import TRANSFER_FILTER, EventScanner, scan_targets

logger = structlog.get_logger(__name__)


class TokenDiscovery:
    """Finds token contracts by their first Transfer event on each chain."""

    def __init__(
        self,
        scanner: EventScanner,
        chains: list[ChainInfo],
        now_fn: Callable[[], float] | None = None,
    ) -> None:
        """Initialize token discovery.

        Args:
            scanner: Event scanner used for every chain
            chains: Chains scanned by default
            now_fn: Optional function to get current timestamp (for testing)
        """
        self.scanner = scanner
        self.chains = chains
        self._now_fn = now_fn or time.time

    async def scan_chain(
        self, chain: ChainInfo, days: float, endpoint: str | None = None
    ) -> dict[str, Token]:
        """Scan one chain and keep the earliest sighting per contract address."""
        now = self._now_fn()
        first_seen: dict[str, Token] = {}
        seen_logs = 0

        async for log in self.scanner.scan(
            chain, [TRANSFER_FILTER], days=days, endpoint=endpoint
        ):
            seen_logs += 1
            current = first_seen.get(log.address)
            if current is not None and current.first_seen_timestamp <= log.timestamp:
                continue
            first_seen[log.address] = Token(
                address=log.address,
                chain_id=chain.chain_id,
                chain_name=chain.name,
                first_seen_block=log.block_number,
                first_seen_timestamp=log.timestamp,
                age_in_hours=max(0.0, (now - log.timestamp) / 3600),
                discovery_tx_hash=log.tx_hash,
            )

        logger.info(
            "Chain scanned for tokens",
            chain=chain.name,
            logs=seen_logs,
            tokens=len(first_seen),
        )
        return first_seen

    async def discover(
        self,
        days: float,
        max_age_hours: float | None = None,
        chains: list[ChainInfo] | None = None,
        endpoint: str | None = None,
    ) -> list[Token]:
        """Discover tokens first seen within the window across chains.

        Each chain is scanned concurrently into its own map; the maps are then
        concatenated without cross-chain deduplication.

        Args:
            days: Lookback window in days
            max_age_hours: Age cutoff, defaults to the window length
            chains: Chains to scan, defaults to the configured chains
            endpoint: Alternate scanning endpoint; scans the first chain only

        Returns:
            Tokens ordered newest first
        """
        targets = scan_targets(chains or self.chains, endpoint)
        cutoff = max_age_hours if max_age_hours is not None else days * 24

        per_chain = await asyncio.gather(
            *(self.scan_chain(chain, days, endpoint=endpoint) for chain in targets)
        )

        tokens: list[Token] = []
        for chain_map in per_chain:
            tokens.extend(t for t in chain_map.values() if t.age_in_hours <= cutoff)

        tokens.sort(key=lambda t: t.first_seen_timestamp, reverse=True)

        logger.info(
            "Token discovery complete",
            chains=[c.name for c in targets],
            days=days,
            tokens=len(tokens),
        )
        return tokens
