"""DexScreener metadata source for token market data."""

import time
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import UpstreamFetchError
from ..core.interfaces import MetadataSource
from ..core.types import TokenMetadata
from .ratelimit import TokenBucket

logger = structlog.get_logger(__name__)


class AsyncLRUCache:
    """Simple async LRU cache with TTL."""

    def __init__(self, maxsize: int = 1000, ttl: float = 60) -> None:
        """Initialize LRU cache.

        Args:
            maxsize: Maximum number of cached items
            ttl: Time to live in seconds
        """
        self.maxsize = maxsize
        self.ttl = ttl
        self.cache: dict[str, tuple[Any, float]] = {}
        self.access_order: list[str] = []

    def get(self, key: str) -> Any | None:
        """Get item from cache."""
        if key not in self.cache:
            return None

        value, timestamp = self.cache[key]

        if time.time() - timestamp > self.ttl:
            del self.cache[key]
            self.access_order.remove(key)
            return None

        self.access_order.remove(key)
        self.access_order.append(key)

        return value

    def set(self, key: str, value: Any) -> None:
        """Set item in cache."""
        if key in self.cache:
            self.access_order.remove(key)

        if len(self.cache) >= self.maxsize and self.access_order:
            oldest_key = self.access_order.pop(0)
            del self.cache[oldest_key]

        self.cache[key] = (value, time.time())
        self.access_order.append(key)


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_dexscreener_pairs_to_metadata(
    address: str, pairs: list[dict[str, Any]]
) -> TokenMetadata | None:
    """Fold DexScreener pairs of a token into one TokenMetadata.

    Liquidity, volume and transaction counts are summed over every pair;
    price, price change and market cap come from the most liquid pair.

    Args:
        address: Token address the pairs were looked up for
        pairs: Raw pair objects

    Returns:
        TokenMetadata, or None when there are no usable pairs
    """
    pairs = [p for p in pairs if isinstance(p, dict)]
    if not pairs:
        return None

    def liquidity(pair: dict[str, Any]) -> float:
        return _float((pair.get("liquidity") or {}).get("usd"))

    main = max(pairs, key=liquidity)
    base = main.get("baseToken") or {}
    price_change = main.get("priceChange") or {}

    total_liquidity = 0.0
    volume_1h = 0.0
    volume_24h = 0.0
    buys = 0
    sells = 0
    pair_addresses: list[str] = []

    for pair in pairs:
        total_liquidity += liquidity(pair)
        volume = pair.get("volume") or {}
        volume_1h += _float(volume.get("h1"))
        volume_24h += _float(volume.get("h24"))
        txns = (pair.get("txns") or {}).get("h24") or {}
        buys += int(_float(txns.get("buys")))
        sells += int(_float(txns.get("sells")))
        if pair.get("pairAddress"):
            pair_addresses.append(str(pair["pairAddress"]).lower())

    return TokenMetadata(
        address=address.lower(),
        chain_id=main.get("chainId"),
        symbol=base.get("symbol"),
        name=base.get("name"),
        price_usd=_optional_float(main.get("priceUsd")),
        liquidity_usd=total_liquidity,
        market_cap=_optional_float(main.get("marketCap")),
        fdv=_optional_float(main.get("fdv")),
        volume_1h=volume_1h,
        volume_24h=volume_24h,
        price_change_1h=_float(price_change.get("h1")),
        price_change_24h=_float(price_change.get("h24")),
        buys_24h=buys,
        sells_24h=sells,
        pair_count=len(pairs),
        pair_addresses=pair_addresses,
    )


class DexScreenerMetadata(MetadataSource):
    """DexScreener API metadata source."""

    def __init__(
        self,
        base_url: str,
        session: httpx.AsyncClient | None = None,
        cache_ttl: float = 60,
    ) -> None:
        """Initialize DexScreener metadata source.

        Args:
            base_url: DexScreener API base URL
            session: Optional httpx client session
            cache_ttl: Cache TTL in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or httpx.AsyncClient(timeout=30.0)

        self.cache = AsyncLRUCache(maxsize=1000, ttl=cache_ttl)

        # DexScreener allows 300 token lookups per minute
        self.rate_limiter = TokenBucket(capacity=300, refill_rate=300 / 60)

        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    async def _make_request(self, endpoint: str) -> dict[str, Any] | None:
        """Make HTTP request with rate limiting and retries.

        Returns:
            API response data, or None on 404

        Raises:
            UpstreamFetchError: On other HTTP errors or exhausted retries
        """
        await self.rate_limiter.wait()

        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        try:
            async for attempt in self.retry_config.copy():
                with attempt:
                    response = await self.session.get(url)
                    if response.status_code == 404:
                        return None
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "HTTP error in DexScreener request",
                endpoint=endpoint,
                status_code=e.response.status_code,
            )
            raise UpstreamFetchError(
                f"DexScreener returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Network error in DexScreener request", endpoint=endpoint, error=str(e)
            )
            raise UpstreamFetchError(f"DexScreener request failed: {e}") from e

        return None

    async def fetch(self, address: str, chain: str | None = None) -> TokenMetadata | None:
        """Look up token metadata.

        Args:
            address: Token contract address
            chain: Optional DexScreener chain id restricting the pairs used

        Returns:
            TokenMetadata or None if the token has no pairs
        """
        address = address.lower()
        cache_key = f"token:{address}:{chain or '*'}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for token", token=address)
            return cached

        response_data = await self._make_request(f"latest/dex/tokens/{address}")
        pairs = (response_data or {}).get("pairs") or []
        if chain:
            pairs = [p for p in pairs if isinstance(p, dict) and p.get("chainId") == chain]

        metadata = map_dexscreener_pairs_to_metadata(address, pairs)
        if metadata is None:
            logger.info("Token not found", token=address, chain=chain)
            return None

        self.cache.set(cache_key, metadata)
        logger.debug("Looked up token", token=address, pairs=metadata.pair_count)
        return metadata

    async def close(self) -> None:
        await self.session.aclose()
