"""Core data types for the token scoring pipeline."""

from dataclasses import dataclass
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Raw token quantities exceed 2**53; JSON output carries them as decimal strings.
Quantity = Annotated[int, PlainSerializer(str, return_type=str, when_used="json")]

EventType = Literal["Transfer", "Approval"]


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChainInfo(BaseModel):
    """Static description of a supported EVM chain."""

    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(description="EVM chain id")
    name: str = Field(description="Human readable chain name")
    block_time: float = Field(gt=0, description="Average block time in seconds")
    hypersync_url: str = Field(description="Event scanning endpoint")
    dexscreener_id: str = Field(description="Chain identifier used by DexScreener")


@dataclass(frozen=True, slots=True)
class RawLog:
    """Single log record returned by the scanning collaborator."""

    chain_id: int
    block_number: int
    timestamp: int
    tx_hash: str
    tx_index: int
    log_index: int
    address: str
    topics: tuple[str, ...]
    data: str
    gas_used: int | None = None
    gas_price: int | None = None


@dataclass(frozen=True, slots=True)
class LogFilter:
    """Log selection: emitting contracts (any when None) and per-position topics.

    ``topics[i]`` lists the accepted values of topic ``i``; an empty list
    accepts anything. Filters passed together are OR'ed.
    """

    topics: tuple[tuple[str, ...], ...]
    addresses: tuple[str, ...] | None = None

    def to_query(self) -> dict[str, list]:
        selection: dict[str, list] = {"topics": [list(t) for t in self.topics]}
        if self.addresses:
            selection["address"] = list(self.addresses)
        return selection


@dataclass(slots=True)
class LogPage:
    """One bounded page of logs plus the first block not covered by it."""

    logs: list[RawLog]
    next_block: int
    archive_height: int | None = None


class Token(CamelModel):
    """Token contract first seen on a chain during a discovery scan."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(description="Lowercased contract address")
    chain_id: int = Field(description="Chain the contract was seen on")
    chain_name: str = Field(description="Human readable chain name")
    first_seen_block: int = Field(default=0)
    first_seen_timestamp: int = Field(default=0, description="Unix seconds")
    age_in_hours: float = Field(default=0.0)
    discovery_tx_hash: str = Field(default="")


class TransactionEvent(CamelModel):
    """Decoded Transfer or Approval log for one token."""

    chain_id: int
    block_number: int
    timestamp: int
    tx_hash: str
    tx_index: int = 0
    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    event_type: EventType
    value: Quantity = 0
    gas_used: Quantity | None = None
    gas_price: Quantity | None = None


class TransactionStats(CamelModel):
    """Derived statistics over a token's transaction set."""

    total_count: int = 0
    transfer_count: int = 0
    approval_count: int = 0
    unique_address_count: int = 0
    first_timestamp: int | None = None
    last_timestamp: int | None = None
    rate_per_hour: float = 0.0


class TransactionBundle(CamelModel):
    """Raw events and stats returned by the transaction collector."""

    events: list[TransactionEvent] = Field(default_factory=list)
    stats: TransactionStats = Field(default_factory=TransactionStats)

    @property
    def has_data(self) -> bool:
        return bool(self.events)


class TokenMetadata(CamelModel):
    """Market metadata reported by the metadata collaborator."""

    address: str
    chain_id: str | None = Field(default=None, description="DexScreener chain id")
    symbol: str | None = None
    name: str | None = None
    price_usd: float | None = None
    liquidity_usd: float = 0.0
    market_cap: float | None = None
    fdv: float | None = None
    volume_1h: float = 0.0
    volume_24h: float = 0.0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    buys_24h: int = 0
    sells_24h: int = 0
    pair_count: int = 0
    pair_addresses: list[str] = Field(default_factory=list)


class TokenMetrics(CamelModel):
    """Bounded signals produced once per scoring pass."""

    model_config = ConfigDict(allow_inf_nan=False)

    activity_score: float = Field(default=0.0, ge=0.0, le=100.0)
    liquidity_health_score: float = Field(default=0.0, ge=0.0, le=100.0)
    momentum_score: float = Field(default=0.0, ge=0.0, le=100.0)
    distribution_score: float = Field(default=0.0, ge=0.0, le=100.0)
    buy_vs_sell_ratio: float = Field(default=1.0, ge=0.0)
    price_change_24h: float = Field(default=0.0)


class MetricsSummary(CamelModel):
    """Subset of TokenMetrics persisted with a cached record."""

    activity_score: float = 0.0
    liquidity_health_score: float = 0.0
    momentum_score: float = 0.0
    distribution_score: float = 0.0
    buy_vs_sell_ratio: float = 1.0

    @classmethod
    def from_metrics(cls, metrics: TokenMetrics) -> "MetricsSummary":
        return cls(
            activity_score=metrics.activity_score,
            liquidity_health_score=metrics.liquidity_health_score,
            momentum_score=metrics.momentum_score,
            distribution_score=metrics.distribution_score,
            buy_vs_sell_ratio=metrics.buy_vs_sell_ratio,
        )


class CachedTokenRecord(CamelModel):
    """Latest scored record for a token, stored under its address."""

    address: str
    chain_id: int = 1
    chain_name: str = "Unknown"
    trending_score: int = Field(ge=0, le=100)
    block: int = 0
    timestamp: int = 0
    age_in_hours: float = 0.0
    last_updated: int = Field(description="Unix milliseconds of the scoring pass")
    metrics: MetricsSummary = Field(default_factory=MetricsSummary)

    def to_token(self) -> Token:
        """Rebuild the discovery view of this record for a re-score pass."""
        return Token(
            address=self.address,
            chain_id=self.chain_id,
            chain_name=self.chain_name,
            first_seen_block=self.block,
            first_seen_timestamp=self.timestamp,
            age_in_hours=self.age_in_hours,
        )


class TokenAnalysis(CamelModel):
    """Full scoring breakdown for a single token."""

    address: str
    trending_score: int
    metrics: TokenMetrics
    stats: TransactionStats
    metadata: TokenMetadata


class WalletProfitEntry(CamelModel):
    """Net token quantity flow of one wallet on one chain."""

    address: str
    chain_id: int
    total_bought: Quantity = 0
    total_sold: Quantity = 0
    profit: Quantity = 0


class WalletOtherToken(CamelModel):
    """Token a ranked wallet was recently seen trading."""

    model_config = ConfigDict(frozen=True)

    token_address: str
    chain_id: int


class WalletAnalysis(CamelModel):
    """Top wallets of a token and the other tokens they trade."""

    token_address: str
    total_transfers: int = 0
    top_wallets: list[WalletProfitEntry] = Field(default_factory=list)
    other_tokens: dict[str, list[WalletOtherToken]] = Field(default_factory=dict)


class BatchResult(BaseModel):
    """Running counters of one batch pass."""

    processed: int = 0
    updated: int = 0
    skipped: int = 0
    no_data: int = 0
    failed: int = 0
    cancelled: bool = False

    @property
    def balanced(self) -> bool:
        return self.processed == (
            self.updated + self.skipped + self.no_data + self.failed
        )


class ChainStats(CamelModel):
    """Per-chain count and score average over the cache."""

    count: int = 0
    total_score: int = 0
    avg_score: float = 0.0
