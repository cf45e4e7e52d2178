"""Per-token Transfer/Approval collection across chains."""

import asyncio

import structlog

from ..core.types import (
    ChainInfo,
    LogFilter,
    RawLog,
    TransactionBundle,
    TransactionEvent,
    TransactionStats,
)
from .scanner import (
    APPROVAL_TOPIC,
    TRANSFER_TOPIC,
    ZERO_ADDRESS,
    EventScanner,
    scan_targets,
    topic_to_address,
)

logger = structlog.get_logger(__name__)

_EVENT_TYPES = {TRANSFER_TOPIC: "Transfer", APPROVAL_TOPIC: "Approval"}


def _decode_value(data: str) -> int:
    word = data.removeprefix("0x")[:64]
    try:
        return int(word, 16) if word else 0
    except ValueError:
        return 0


def decode_event(log: RawLog) -> TransactionEvent | None:
    """Decode a Transfer or Approval log, or None for anything else."""
    if len(log.topics) < 3:
        return None
    event_type = _EVENT_TYPES.get(log.topics[0])
    if event_type is None:
        return None

    return TransactionEvent(
        chain_id=log.chain_id,
        block_number=log.block_number,
        timestamp=log.timestamp,
        tx_hash=log.tx_hash,
        tx_index=log.tx_index,
        from_address=topic_to_address(log.topics[1]),
        to_address=topic_to_address(log.topics[2]),
        event_type=event_type,
        value=_decode_value(log.data),
        gas_used=log.gas_used,
        gas_price=log.gas_price,
    )


def compute_stats(events: list[TransactionEvent]) -> TransactionStats:
    """Summarise a transaction set."""
    if not events:
        return TransactionStats()

    addresses: set[str] = set()
    transfers = 0
    approvals = 0
    first_ts = events[0].timestamp
    last_ts = events[0].timestamp

    for event in events:
        if event.event_type == "Transfer":
            transfers += 1
        else:
            approvals += 1
        addresses.add(event.from_address)
        addresses.add(event.to_address)
        first_ts = min(first_ts, event.timestamp)
        last_ts = max(last_ts, event.timestamp)

    addresses.discard(ZERO_ADDRESS)
    span_hours = max((last_ts - first_ts) / 3600, 1.0)

    return TransactionStats(
        total_count=len(events),
        transfer_count=transfers,
        approval_count=approvals,
        unique_address_count=len(addresses),
        first_timestamp=first_ts,
        last_timestamp=last_ts,
        rate_per_hour=len(events) / span_hours,
    )


class TransactionCollector:
    """Collects one token's Transfer and Approval events on every chain."""

    def __init__(
        self,
        scanner: EventScanner,
        chains: list[ChainInfo],
        lookback_days: float | None = None,
    ) -> None:
        """Initialize transaction collector.

        Args:
            scanner: Event scanner used for every chain
            chains: Chains queried for each token
            lookback_days: Window of history collected per token, or None for
                the full history from block 0
        """
        self.scanner = scanner
        self.chains = chains
        self.lookback_days = lookback_days

    async def collect_chain(
        self,
        chain: ChainInfo,
        address: str,
        days: float | None = None,
        event_types: tuple[str, ...] = (TRANSFER_TOPIC, APPROVAL_TOPIC),
        endpoint: str | None = None,
    ) -> list[TransactionEvent]:
        """Collect events emitted by ``address`` on one chain, in scan order."""
        log_filter = LogFilter(topics=(event_types,), addresses=(address.lower(),))
        events: list[TransactionEvent] = []

        window = days if days is not None else self.lookback_days
        async for log in self.scanner.scan(
            chain,
            [log_filter],
            days=window,
            from_block=0 if window is None else None,
            endpoint=endpoint,
        ):
            event = decode_event(log)
            if event is not None:
                events.append(event)

        return events

    async def collect(
        self,
        address: str,
        days: float | None = None,
        transfers_only: bool = False,
        endpoint: str | None = None,
    ) -> TransactionBundle:
        """Collect events for one token across all chains.

        Chains are queried concurrently; results are concatenated in chain
        order without a global timestamp merge.

        Raises:
            UpstreamFetchError: If any chain query fails
        """
        event_types = (TRANSFER_TOPIC,) if transfers_only else (
            TRANSFER_TOPIC,
            APPROVAL_TOPIC,
        )
        chains = scan_targets(self.chains, endpoint)

        per_chain = await asyncio.gather(
            *(
                self.collect_chain(
                    chain, address, days=days, event_types=event_types, endpoint=endpoint
                )
                for chain in chains
            )
        )

        events = [event for chain_events in per_chain for event in chain_events]
        stats = compute_stats(events)

        logger.debug(
            "Collected token transactions",
            token=address,
            events=stats.total_count,
            transfers=stats.transfer_count,
            approvals=stats.approval_count,
        )
        return TransactionBundle(events=events, stats=stats)
