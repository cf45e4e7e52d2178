"""Main token scoring pipeline runner."""

import argparse
import asyncio
import signal
import sys
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog

from ..analysis.wallets import WalletProfitAnalyzer
from ..config.chains import select_chains
from ..config.settings import AppSettings, load_settings
from ..core.interfaces import LogSource, MetadataSource
from ..core.types import (
    BatchResult,
    ChainStats,
    Token,
    TokenAnalysis,
    TokenMetadata,
    TransactionBundle,
    WalletAnalysis,
)
from ..data.dexscreener import DexScreenerMetadata
from ..data.hypersync import HyperSyncClient
from ..persist.storage import SQLiteTokenCache
from ..scan.collector import TransactionCollector
from ..scan.discovery import TokenDiscovery
from ..scan.scanner import EventScanner
from .batch import BatchScheduler
from .scheduler import RefreshScheduler

logger = structlog.get_logger(__name__)

REFRESH_LOCK = "token-refresh"

DEFAULT_DISCOVERY_DAYS = 1
SEED_DAYS, SEED_MAX_TOKENS, SEED_CONCURRENCY = 30, 5000, 20
REFRESH_DAYS, REFRESH_MAX_TOKENS, REFRESH_CONCURRENCY = 2, 1000, 15
NEW_TOKEN_DAYS, MAX_NEW_TOKENS, NEW_TOKEN_CONCURRENCY = 1, 500, 15
UPDATE_ALL_CONCURRENCY = 10
TRENDING_LIMIT = 100


class TrendingPipeline:
    """Token scoring pipeline orchestrator."""

    def __init__(
        self,
        settings: AppSettings,
        log_source: LogSource | None = None,
        metadata_source: MetadataSource | None = None,
        store: SQLiteTokenCache | None = None,
    ) -> None:
        """Initialize the pipeline with assembled components.

        Args:
            settings: Application settings
            log_source: Optional scanning collaborator (defaults to HyperSync)
            metadata_source: Optional metadata collaborator (defaults to DexScreener)
            store: Optional token cache (defaults to SQLite at ``database_path``)
        """
        self.settings = settings
        self.components = self._assemble(settings, log_source, metadata_source, store)

        logger.info(
            "Token pipeline initialized",
            chains=[c.name for c in self.components["chains"]],
            database_path=settings.database_path,
            exclusive_refresh=settings.exclusive_refresh,
        )

    def _assemble(
        self,
        settings: AppSettings,
        log_source: LogSource | None,
        metadata_source: MetadataSource | None,
        store: SQLiteTokenCache | None,
    ) -> dict[str, Any]:
        """Assemble all pipeline components from settings.

        Returns:
            Dictionary of assembled components
        """
        components: dict[str, Any] = {}

        chains = select_chains(settings.enabled_chains)
        if not chains:
            raise ValueError(f"No supported chains enabled: {settings.enabled_chains}")
        components["chains"] = chains

        if log_source is None:
            if not settings.hypersync_bearer_token:
                logger.warning("HyperSync bearer token not provided, using public rate limits")
            log_source = HyperSyncClient(
                bearer_token=settings.hypersync_bearer_token,
                rpc_urls=settings.rpc_urls,
            )
        components["log_source"] = log_source

        if metadata_source is None:
            metadata_source = DexScreenerMetadata(base_url=settings.dexscreener_base)
            logger.info("Added DexScreener metadata source")
        components["metadata"] = metadata_source

        if store is None:
            store = SQLiteTokenCache(db_path=settings.database_path)
        components["store"] = store

        scanner = EventScanner(log_source, request_delay=settings.request_delay_seconds)
        collector = TransactionCollector(
            scanner, chains, lookback_days=settings.transaction_lookback_days
        )
        components["scanner"] = scanner
        components["discovery"] = TokenDiscovery(scanner, chains)
        components["collector"] = collector
        components["wallets"] = WalletProfitAnalyzer(collector, scanner)
        components["batch"] = BatchScheduler(store, collector, metadata_source)

        return components

    @property
    def store(self) -> SQLiteTokenCache:
        return self.components["store"]

    def create_scheduler(self) -> RefreshScheduler:
        """Build the unattended refresh timer for this pipeline."""
        return RefreshScheduler(
            self,
            interval_seconds=self.settings.refresh_interval_seconds,
            new_token_days=self.settings.refresh_new_token_days,
            max_new_tokens=self.settings.refresh_max_new_tokens,
            concurrency=self.settings.refresh_concurrency,
            run_on_start=self.settings.run_refresh_on_start,
        )

    async def start(self) -> None:
        """Prepare the token cache."""
        await self.store.initialize()

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[bool]:
        """Hold the refresh lease when exclusive refreshes are enabled."""
        if not self.settings.exclusive_refresh:
            yield True
            return

        owner = uuid.uuid4().hex
        acquired = await self.store.acquire_lock(
            REFRESH_LOCK, owner, self.settings.lock_lease_seconds
        )
        try:
            yield acquired
        finally:
            if acquired:
                await self.store.release_lock(REFRESH_LOCK, owner)

    async def run_batch(
        self,
        tokens: list[Token],
        force_update: bool = False,
        concurrency: int = 10,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Score tokens into the cache through the batch scheduler."""
        async with self._exclusive() as acquired:
            if not acquired:
                logger.warning("Refresh already running elsewhere, skipping batch", tokens=len(tokens))
                return BatchResult(cancelled=True)
            return await self.components["batch"].run(
                tokens,
                force_update=force_update,
                concurrency=concurrency,
                stop_event=stop_event,
            )

    async def discover_tokens(
        self,
        days: float = DEFAULT_DISCOVERY_DAYS,
        endpoint: str | None = None,
        max_age_hours: float | None = None,
    ) -> list[Token]:
        """Discover recently deployed tokens, newest first."""
        return await self.components["discovery"].discover(
            days, max_age_hours=max_age_hours, endpoint=endpoint
        )

    async def recent_tokens(self, days: float, max_tokens: int) -> tuple[int, list[Token]]:
        """Discover tokens and keep the ``max_tokens`` most recent.

        Returns:
            Number of tokens discovered and the selected subset
        """
        tokens = await self.discover_tokens(days)
        selected = tokens[:max_tokens]
        logger.info("Selected most recent tokens", selected=len(selected), total=len(tokens))
        return len(tokens), selected

    async def fetch_metadata(self, address: str, chain: str | None = None) -> TokenMetadata | None:
        metadata = self.components["metadata"]
        if chain is not None:
            return await metadata.fetch(address, chain=chain)
        return await metadata.fetch(address)

    async def fetch_transactions(
        self, address: str, endpoint: str | None = None
    ) -> TransactionBundle:
        return await self.components["collector"].collect(address, endpoint=endpoint)

    async def seed_cache(
        self, tokens: list[Token], concurrency: int = SEED_CONCURRENCY
    ) -> BatchResult:
        """Score tokens that are not cached yet."""
        return await self.run_batch(tokens, force_update=False, concurrency=concurrency)

    async def refresh_tokens(
        self, tokens: list[Token], concurrency: int = REFRESH_CONCURRENCY
    ) -> BatchResult:
        """Re-score tokens whether or not they are cached."""
        return await self.run_batch(tokens, force_update=True, concurrency=concurrency)

    async def update_all_scores(
        self,
        concurrency: int = UPDATE_ALL_CONCURRENCY,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Force a re-score of every cached token."""
        records = await self.store.list_records()
        logger.info("Re-scoring cached tokens", tokens=len(records))
        if not records:
            return BatchResult()

        tokens = [record.to_token() for record in records]
        return await self.run_batch(
            tokens, force_update=True, concurrency=concurrency, stop_event=stop_event
        )

    async def add_new_tokens(
        self,
        days: float = NEW_TOKEN_DAYS,
        max_new_tokens: int = MAX_NEW_TOKENS,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Score discovered tokens that have no cached record yet."""
        tokens = await self.discover_tokens(days)

        new_tokens = []
        for token in tokens:
            if not await self.store.exists(token.address):
                new_tokens.append(token)

        logger.info("New tokens found", discovered=len(tokens), new=len(new_tokens))
        if not new_tokens:
            return BatchResult()

        return await self.run_batch(
            new_tokens[:max_new_tokens],
            force_update=False,
            concurrency=NEW_TOKEN_CONCURRENCY,
            stop_event=stop_event,
        )

    async def trending_tokens(
        self, limit: int = TRENDING_LIMIT, chain: str | None = None
    ) -> dict[str, Any]:
        """Cached records by trending score, highest first.

        Args:
            limit: Maximum number of records returned
            chain: Optional case-insensitive chain name filter
        """
        records = await self.store.list_records()
        if chain:
            wanted = chain.lower()
            records = [r for r in records if r.chain_name.lower() == wanted]

        ranked = sorted(records, key=lambda r: r.trending_score, reverse=True)[:limit]
        return {
            "total": len(records),
            "returned": len(ranked),
            "chain": chain or "all",
            "tokens": [r.model_dump(mode="json", by_alias=True) for r in ranked],
        }

    async def analyze_token(self, address: str) -> TokenAnalysis:
        """Score one token without writing the cache.

        Raises:
            NoDataError: If the token has no transactions or no metadata
        """
        address = address.lower()
        cached = await self.store.get(address)
        token = cached.to_token() if cached else Token(
            address=address, chain_id=1, chain_name="Unknown"
        )
        analysis = await self.components["batch"].score_token(token)
        logger.info("Token analyzed", address=address, trending_score=analysis.trending_score)
        return analysis

    async def chain_stats(self) -> dict[str, Any]:
        """Per-chain count and average score over the whole cache."""
        records = await self.store.list_records()

        distribution: dict[str, ChainStats] = {}
        for record in records:
            stats = distribution.setdefault(record.chain_name or "Unknown", ChainStats())
            stats.count += 1
            stats.total_score += record.trending_score
            stats.avg_score = stats.total_score / stats.count

        return {
            "totalTokens": len(records),
            "chainDistribution": {
                name: stats.model_dump(by_alias=True) for name, stats in distribution.items()
            },
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }

    async def analyze_wallets(self, address: str) -> WalletAnalysis:
        return await self.components["wallets"].analyze(address)

    async def close(self) -> None:
        """Release HTTP sessions and the token cache."""
        for key in ("log_source", "metadata"):
            close = getattr(self.components[key], "close", None)
            if close is not None:
                await close()
        await self.store.close()
        logger.info("Token pipeline closed")


def main() -> None:
    """Main entry point for the token scoring service."""
    from ..api.loop import LoopThread
    from ..api.server import create_app

    parser = argparse.ArgumentParser(description="Multi-chain trending token scanner")
    parser.add_argument("--config", default=None, help="Configuration file path")
    parser.add_argument(
        "--profile",
        default="dev",
        choices=["dev", "prod"],
        help="Configuration profile",
    )

    args = parser.parse_args()

    try:
        settings = load_settings(args.profile, args.config)
        logger.info("Settings loaded", profile=args.profile, config=args.config)
    except Exception as e:
        logger.error("Fatal error", error=str(e))
        sys.exit(1)

    bridge = LoopThread().start()
    pipeline = TrendingPipeline(settings)
    scheduler = pipeline.create_scheduler()

    def signal_handler(signum, frame):
        logger.info("Received shutdown signal", signal=signum)
        raise KeyboardInterrupt

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        bridge.run(pipeline.start())
        bridge.run(scheduler.start())

        app = create_app(pipeline, bridge)
        logger.info("HTTP server starting", host=settings.api_host, port=settings.api_port)
        app.run(host=settings.api_host, port=settings.api_port, threaded=True)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    except Exception as e:
        logger.error("Fatal error", error=str(e))
        sys.exit(1)
    finally:
        # Stop the scheduler before closing the cache it writes to
        bridge.run(scheduler.stop())
        bridge.run(pipeline.close())
        bridge.stop()


if __name__ == "__main__":
    main()
