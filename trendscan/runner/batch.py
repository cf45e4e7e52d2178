"""Chunked batch scoring of tokens into the cache."""

import asyncio
import time
from collections.abc import Callable

import structlog

from ..core.errors import NoDataError
from ..core.interfaces import MetadataSource, TokenStore
from ..core.types import (
    BatchResult,
    CachedTokenRecord,
    MetricsSummary,
    Token,
    TokenAnalysis,
)
from ..scan.collector import TransactionCollector
from ..scoring.aggregator import OnChainAggregator, calculate_trending_score

logger = structlog.get_logger(__name__)

MAX_LOGGED_FAILURES = 5


class BatchScheduler:
    """Scores tokens in fixed-size chunks and writes the results to the cache.

    A chunk is dispatched all at once and must fully settle before the next
    one starts. That barrier is the only backpressure against the upstream
    collaborators.
    """

    def __init__(
        self,
        store: TokenStore,
        collector: TransactionCollector,
        metadata: MetadataSource,
        now_ms_fn: Callable[[], int] | None = None,
        max_logged_failures: int = MAX_LOGGED_FAILURES,
    ) -> None:
        """Initialize batch scheduler.

        Args:
            store: Token cache written by the batch
            collector: Per-token transaction collector
            metadata: Per-token metadata source
            now_ms_fn: Optional function returning Unix milliseconds (for testing)
            max_logged_failures: Failures logged in detail per run
        """
        self.store = store
        self.collector = collector
        self.metadata = metadata
        self._now_ms_fn = now_ms_fn or (lambda: int(time.time() * 1000))
        self.max_logged_failures = max_logged_failures

    async def score_token(self, token: Token) -> TokenAnalysis:
        """Run the scoring pipeline for one token without touching the cache.

        Args:
            token: Token to score

        Returns:
            Score with its metrics, transaction stats and metadata

        Raises:
            NoDataError: If the token has no transactions or no metadata
            UpstreamFetchError: If a collaborator fails
        """
        bundle = await self.collector.collect(token.address)
        metadata = await self.metadata.fetch(token.address)

        if not bundle.has_data:
            raise NoDataError(f"No transactions found for {token.address}")
        if metadata is None:
            raise NoDataError(f"No metadata found for {token.address}")

        # Fresh accumulator per token
        aggregator = OnChainAggregator()
        aggregator.add_transactions(bundle.events)
        aggregator.add_token_data(metadata)
        metrics = aggregator.analyze()

        return TokenAnalysis(
            address=token.address,
            trending_score=calculate_trending_score(metrics),
            metrics=metrics,
            stats=bundle.stats,
            metadata=metadata,
        )

    def _record(self, token: Token, analysis: TokenAnalysis) -> CachedTokenRecord:
        return CachedTokenRecord(
            address=token.address,
            chain_id=token.chain_id,
            chain_name=token.chain_name,
            trending_score=analysis.trending_score,
            block=token.first_seen_block,
            timestamp=token.first_seen_timestamp,
            age_in_hours=token.age_in_hours,
            last_updated=self._now_ms_fn(),
            metrics=MetricsSummary.from_metrics(analysis.metrics),
        )

    async def _process(self, token: Token, force_update: bool, result: BatchResult) -> None:
        try:
            if not force_update and await self.store.exists(token.address):
                result.skipped += 1
                return

            analysis = await self.score_token(token)
            await self.store.set(self._record(token, analysis))
            result.updated += 1

            if result.updated <= 5 or result.updated % 100 == 0:
                logger.info(
                    "Token scored",
                    address=token.address,
                    chain=token.chain_name,
                    trending_score=analysis.trending_score,
                    transactions=analysis.stats.total_count,
                )

        except NoDataError as e:
            result.no_data += 1
            logger.debug("Token has no data", address=token.address, reason=str(e))
        except Exception as e:
            result.failed += 1
            if result.failed <= self.max_logged_failures:
                logger.error(
                    "Failed to process token",
                    address=token.address,
                    chain=token.chain_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        finally:
            result.processed += 1

    async def run(
        self,
        tokens: list[Token],
        force_update: bool = False,
        concurrency: int = 10,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Score tokens chunk by chunk.

        Per-token failures are counted and never abort the run. A set
        ``stop_event`` is honoured between chunks only.

        Args:
            tokens: Tokens to process, in order
            force_update: Re-score tokens that already have a cached record
            concurrency: Chunk size
            stop_event: Optional cancellation token

        Returns:
            Final counters
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        result = BatchResult()
        logger.info(
            "Batch started",
            tokens=len(tokens),
            concurrency=concurrency,
            force_update=force_update,
        )

        for start in range(0, len(tokens), concurrency):
            if stop_event is not None and stop_event.is_set():
                result.cancelled = True
                logger.info("Batch cancelled", processed=result.processed, remaining=len(tokens) - start)
                break

            chunk = tokens[start : start + concurrency]
            await asyncio.gather(
                *(self._process(token, force_update, result) for token in chunk)
            )

            logger.info(
                "Batch progress",
                progress=f"{result.processed / len(tokens) * 100:.1f}%",
                processed=result.processed,
                total=len(tokens),
                updated=result.updated,
                skipped=result.skipped,
                no_data=result.no_data,
                failed=result.failed,
            )

        logger.info(
            "Batch complete",
            updated=result.updated,
            skipped=result.skipped,
            no_data=result.no_data,
            failed=result.failed,
            cancelled=result.cancelled,
        )
        return result
