"""Wallet ranking by token quantity flow and expansion into traded tokens."""

import asyncio
from collections import defaultdict

import structlog

from ..config.chains import get_chain
from ..core.types import (
    LogFilter,
    TransactionEvent,
    WalletAnalysis,
    WalletOtherToken,
    WalletProfitEntry,
)
from ..scan.collector import TransactionCollector
from ..scan.scanner import (
    TRANSFER_TOPIC,
    ZERO_ADDRESS,
    EventScanner,
    address_to_topic,
)

logger = structlog.get_logger(__name__)

TOP_WALLETS = 5
MAX_OTHER_TOKENS = 50
OTHER_TOKENS_WINDOW_DAYS = 1.0


def rank_wallets(
    events: list[TransactionEvent], limit: int = TOP_WALLETS
) -> list[WalletProfitEntry]:
    """Rank wallets by ``total_sold - total_bought`` over Transfer events.

    The receiver of a transfer is credited as having bought ``value``, the
    sender as having sold it, per (wallet, chain). The zero address is left
    out of the ranking.

    Args:
        events: Token events; non-Transfer events are ignored
        limit: Number of wallets kept

    Returns:
        Top wallets, highest profit first
    """
    bought: defaultdict[tuple[str, int], int] = defaultdict(int)
    sold: defaultdict[tuple[str, int], int] = defaultdict(int)

    for event in events:
        if event.event_type != "Transfer":
            continue
        bought[(event.to_address, event.chain_id)] += event.value
        sold[(event.from_address, event.chain_id)] += event.value

    entries = []
    for key in bought.keys() | sold.keys():
        wallet, chain_id = key
        if wallet == ZERO_ADDRESS:
            continue
        entries.append(
            WalletProfitEntry(
                address=wallet,
                chain_id=chain_id,
                total_bought=bought[key],
                total_sold=sold[key],
                profit=sold[key] - bought[key],
            )
        )

    # address/chain tie-break keeps the ranking deterministic
    entries.sort(key=lambda e: (-e.profit, e.address, e.chain_id))
    return entries[:limit]


class WalletProfitAnalyzer:
    """Finds a token's top wallets and what else they are trading."""

    def __init__(
        self,
        collector: TransactionCollector,
        scanner: EventScanner,
        top_wallets: int = TOP_WALLETS,
        max_other_tokens: int = MAX_OTHER_TOKENS,
        window_days: float = OTHER_TOKENS_WINDOW_DAYS,
    ) -> None:
        self.collector = collector
        self.scanner = scanner
        self.top_wallets = top_wallets
        self.max_other_tokens = max_other_tokens
        self.window_days = window_days

    async def other_tokens(
        self, wallet: WalletProfitEntry, exclude: str
    ) -> list[WalletOtherToken]:
        """Distinct tokens the wallet sent or received on its chain recently."""
        chain = get_chain(wallet.chain_id)
        wallet_topic = address_to_topic(wallet.address)
        filters = [
            LogFilter(topics=((TRANSFER_TOPIC,), (wallet_topic,))),
            LogFilter(topics=((TRANSFER_TOPIC,), (), (wallet_topic,))),
        ]

        found: dict[tuple[str, int], WalletOtherToken] = {}
        logs = self.scanner.scan(chain, filters, days=self.window_days)
        try:
            async for log in logs:
                if log.address == exclude:
                    continue
                key = (log.address, chain.chain_id)
                if key not in found:
                    found[key] = WalletOtherToken(
                        token_address=log.address, chain_id=chain.chain_id
                    )
                    if len(found) >= self.max_other_tokens:
                        break
        finally:
            await logs.aclose()

        return list(found.values())

    async def analyze(self, token_address: str) -> WalletAnalysis:
        """Rank the token's wallets and expand the winners.

        Raises:
            UpstreamFetchError: If a scan fails
        """
        token_address = token_address.lower()
        bundle = await self.collector.collect(token_address, transfers_only=True)
        top = rank_wallets(bundle.events, limit=self.top_wallets)

        expansions = await asyncio.gather(
            *(self.other_tokens(wallet, exclude=token_address) for wallet in top)
        )

        other_tokens: dict[str, list[WalletOtherToken]] = {}
        for wallet, tokens in zip(top, expansions, strict=True):
            other_tokens.setdefault(wallet.address, [])
            known = set(other_tokens[wallet.address])
            for token in tokens:
                if token in known or len(other_tokens[wallet.address]) >= self.max_other_tokens:
                    continue
                known.add(token)
                other_tokens[wallet.address].append(token)

        logger.info(
            "Wallet analysis complete",
            token=token_address,
            transfers=bundle.stats.transfer_count,
            wallets=len(top),
        )
        return WalletAnalysis(
            token_address=token_address,
            total_transfers=bundle.stats.transfer_count,
            top_wallets=top,
            other_tokens=other_tokens,
        )
