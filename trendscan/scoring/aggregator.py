"""On-chain scoring accumulator and composite trending score."""

import math
from collections import Counter, defaultdict

import structlog

from ..core.types import TokenMetadata, TokenMetrics, TransactionEvent
from ..scan.scanner import ZERO_ADDRESS

logger = structlog.get_logger(__name__)

TOP_HOLDERS = 10


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round .5 upwards, matching the score's published rounding."""
    return math.floor(value + 0.5)


def calculate_trending_score(metrics: TokenMetrics) -> int:
    """Composite trending score in [0, 100].

    Weights: activity 25%, liquidity 20%, distribution 15%, momentum 10%,
    buy/sell ratio 10% (ratio capped at 100). The 24h price change is floored
    at -100 and halved before the outer clamp.
    """
    score = (
        metrics.activity_score * 0.25
        + metrics.liquidity_health_score * 0.2
        + metrics.distribution_score * 0.15
        + metrics.momentum_score * 0.1
        + min(metrics.buy_vs_sell_ratio, 100) * 0.1
        + max(metrics.price_change_24h, -100) / 2
    )
    return round_half_up(_clamp(score, 0, 100))


class OnChainAggregator:
    """Folds one token's transactions and metadata into TokenMetrics.

    Not idempotent: every ``add_*`` call accumulates, so feeding the same data
    twice double-counts. Use one instance per token per scoring pass.
    """

    def __init__(self) -> None:
        self._transfer_count = 0
        self._approval_count = 0
        self._first_ts: int | None = None
        self._last_ts: int | None = None
        self._balances: defaultdict[str, int] = defaultdict(int)
        self._sent = Counter()
        self._received = Counter()

        self._metadata_count = 0
        self._liquidity_usd = 0.0
        self._market_cap = 0.0
        self._volume_1h = 0.0
        self._volume_24h = 0.0
        self._price_change_1h = 0.0
        self._price_change_24h = 0.0
        self._reported_buys = 0
        self._reported_sells = 0
        self._pairs: set[str] = set()

    def add_transactions(self, events: list[TransactionEvent]) -> None:
        """Accumulate transaction counts, time span and transfer flows."""
        for event in events:
            if self._first_ts is None or event.timestamp < self._first_ts:
                self._first_ts = event.timestamp
            if self._last_ts is None or event.timestamp > self._last_ts:
                self._last_ts = event.timestamp

            if event.event_type == "Approval":
                self._approval_count += 1
                continue

            self._transfer_count += 1
            self._balances[event.to_address] += event.value
            self._balances[event.from_address] -= event.value
            self._sent[event.from_address] += 1
            self._received[event.to_address] += 1

    def add_token_data(self, metadata: TokenMetadata) -> None:
        """Accumulate market metadata."""
        self._metadata_count += 1
        self._liquidity_usd += metadata.liquidity_usd
        self._market_cap += metadata.market_cap or metadata.fdv or 0.0
        self._volume_1h += metadata.volume_1h
        self._volume_24h += metadata.volume_24h
        self._price_change_1h += metadata.price_change_1h
        self._price_change_24h += metadata.price_change_24h
        self._reported_buys += metadata.buys_24h
        self._reported_sells += metadata.sells_24h
        self._pairs.update(p.lower() for p in metadata.pair_addresses)

    def _activity_score(self) -> float:
        if self._transfer_count == 0 or self._first_ts is None:
            return 0.0
        span_hours = max((self._last_ts - self._first_ts) / 3600, 1.0)
        per_hour = self._transfer_count / span_hours
        return _clamp(50 * math.log10(1 + per_hour), 0, 100)

    def _liquidity_health_score(self) -> float:
        if self._liquidity_usd <= 0 or self._market_cap <= 0:
            return 0.0
        return _clamp(self._liquidity_usd / self._market_cap * 500, 0, 100)

    def _momentum_score(self) -> float:
        price_term = _clamp(self._price_change_1h, -50, 50) * 0.5
        volume_term = 0.0
        if self._volume_24h > 0:
            hourly_ratio = self._volume_1h * 24 / self._volume_24h
            volume_term = _clamp((hourly_ratio - 1) * 25, -25, 25)
        return _clamp(50 + price_term + volume_term, 0, 100)

    def _distribution_score(self) -> float:
        holdings = [
            balance
            for holder, balance in self._balances.items()
            if balance > 0 and holder != ZERO_ADDRESS and holder not in self._pairs
        ]
        if not holdings:
            return 0.0
        total = sum(holdings)
        top = sum(sorted(holdings, reverse=True)[:TOP_HOLDERS])
        return _clamp((1 - top / total) * 100, 0, 100)

    def _buy_vs_sell_ratio(self) -> float:
        buys = sum(self._sent[pair] for pair in self._pairs)
        sells = sum(self._received[pair] for pair in self._pairs)
        if buys == 0 and sells == 0:
            buys, sells = self._reported_buys, self._reported_sells

        if sells > 0:
            return buys / sells
        if buys > 0:
            return float(buys)
        return 1.0

    def analyze(self) -> TokenMetrics:
        """Derive the bounded sub-scores from everything accumulated so far."""
        metrics = TokenMetrics(
            activity_score=self._activity_score(),
            liquidity_health_score=self._liquidity_health_score(),
            momentum_score=self._momentum_score(),
            distribution_score=self._distribution_score(),
            buy_vs_sell_ratio=self._buy_vs_sell_ratio(),
            price_change_24h=self._price_change_24h,
        )

        logger.debug(
            "On-chain metrics computed",
            transfers=self._transfer_count,
            approvals=self._approval_count,
            holders=len(self._balances),
            metadata_feeds=self._metadata_count,
            activity=metrics.activity_score,
            liquidity=metrics.liquidity_health_score,
            momentum=metrics.momentum_score,
            distribution=metrics.distribution_score,
            buy_vs_sell=metrics.buy_vs_sell_ratio,
        )
        return metrics
