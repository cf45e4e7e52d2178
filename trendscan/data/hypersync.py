"""HyperSync log client for EVM chains."""

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
from ..core.interfaces import LogSource
from ..core.types import ChainInfo, LogFilter, LogPage, RawLog
from .ratelimit import TokenBucket

logger = structlog.get_logger(__name__)

LOG_FIELDS = [
    "block_number",
    "log_index",
    "transaction_index",
    "transaction_hash",
    "address",
    "data",
    "topic0",
    "topic1",
    "topic2",
    "topic3",
]
BLOCK_FIELDS = ["number", "timestamp"]
TRANSACTION_FIELDS = ["block_number", "transaction_index", "gas_used", "gas_price"]


def to_int(value: Any, default: int = 0) -> int:
    """Parse an int that may arrive as a hex string, decimal string or number."""
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
        except ValueError:
            return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _batches(payload: dict[str, Any]) -> list[dict[str, Any]]:
    data = payload.get("data")
    if isinstance(data, list):
        return [batch for batch in data if isinstance(batch, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def parse_query_response(
    chain: ChainInfo, payload: dict[str, Any], from_block: int
) -> LogPage:
    """Map a HyperSync query response to a LogPage.

    Logs are joined with their block timestamp and transaction gas fields.
    Missing fields are kept empty; callers decide what to discard.

    Args:
        chain: Chain the query ran against
        payload: Raw JSON response
        from_block: Block the query started at

    Returns:
        LogPage with parsed logs and the next block to query
    """
    logs: list[RawLog] = []
    last_block = from_block

    for batch in _batches(payload):
        block_ts = {
            to_int(b.get("number")): to_int(b.get("timestamp"))
            for b in batch.get("blocks") or []
        }
        tx_gas = {
            (to_int(t.get("block_number")), to_int(t.get("transaction_index"))): t
            for t in batch.get("transactions") or []
        }

        for log in batch.get("logs") or []:
            block_number = to_int(log.get("block_number"))
            tx_index = to_int(log.get("transaction_index"))
            topics = []
            for name in ("topic0", "topic1", "topic2", "topic3"):
                topic = log.get(name)
                if not topic:
                    break
                topics.append(topic.lower())

            tx = tx_gas.get((block_number, tx_index)) or {}
            logs.append(
                RawLog(
                    chain_id=chain.chain_id,
                    block_number=block_number,
                    timestamp=block_ts.get(block_number, 0),
                    tx_hash=log.get("transaction_hash") or "",
                    tx_index=tx_index,
                    log_index=to_int(log.get("log_index")),
                    address=(log.get("address") or "").lower(),
                    topics=tuple(topics),
                    data=log.get("data") or "",
                    gas_used=to_int(tx["gas_used"]) if tx.get("gas_used") else None,
                    gas_price=to_int(tx["gas_price"]) if tx.get("gas_price") else None,
                )
            )
            last_block = max(last_block, block_number)

    next_block = to_int(payload.get("next_block"), default=last_block + 1)
    archive_height = payload.get("archive_height")

    return LogPage(
        logs=logs,
        next_block=next_block,
        archive_height=to_int(archive_height) if archive_height is not None else None,
    )


class HyperSyncClient(LogSource):
    """HyperSync JSON API client with per-chain RPC height fallback."""

    def __init__(
        self,
        bearer_token: str | None = None,
        rpc_urls: dict[int, str] | None = None,
        session: httpx.AsyncClient | None = None,
        requests_per_minute: int = 300,
    ) -> None:
        """Initialize HyperSync client.

        Args:
            bearer_token: Optional API token for higher rate limits
            rpc_urls: Optional JSON-RPC URLs per chain id, used when the
                height endpoint is unavailable
            session: Optional httpx client session
            requests_per_minute: Client-side request budget
        """
        self.bearer_token = bearer_token
        self.rpc_urls = rpc_urls or {}
        self.session = session or httpx.AsyncClient(timeout=120.0)

        self.rate_limiter = TokenBucket(
            capacity=requests_per_minute, refill_rate=requests_per_minute / 60
        )

        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    async def _request(
        self, method: str, url: str, json_body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make HTTP request with rate limiting and retries.

        Raises:
            UpstreamFetchError: On HTTP errors or when all retries are exhausted
        """
        await self.rate_limiter.wait()

        try:
            async for attempt in self.retry_config.copy():
                with attempt:
                    response = await self.session.request(
                        method, url, json=json_body, headers=self._headers()
                    )
                    response.raise_for_status()
                    payload = response.json()
                    if not isinstance(payload, dict):
                        raise UpstreamFetchError(f"Unexpected response from {url}")
                    return payload
        except httpx.HTTPStatusError as e:
            logger.warning(
                "HTTP error in HyperSync request",
                url=url,
                status_code=e.response.status_code,
            )
            raise UpstreamFetchError(
                f"HyperSync returned {e.response.status_code} for {url}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Network error in HyperSync request", url=url, error=str(e))
            raise UpstreamFetchError(f"HyperSync request failed: {e}") from e

        raise UpstreamFetchError(f"HyperSync request to {url} returned nothing")

    async def _rpc_block_number(self, rpc_url: str) -> int:
        payload = await self._request(
            "POST",
            rpc_url,
            {"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []},
        )
        if "result" not in payload:
            raise UpstreamFetchError(f"RPC error from {rpc_url}: {payload.get('error')}")
        return to_int(payload["result"])

    async def get_height(self, chain: ChainInfo, endpoint: str | None = None) -> int:
        """Return the archive height of the chain.

        Falls back to ``eth_blockNumber`` on the chain's RPC URL when the
        height endpoint fails and a fallback is configured.
        """
        base_url = (endpoint or chain.hypersync_url).rstrip("/")
        try:
            payload = await self._request("GET", f"{base_url}/height")
            return to_int(payload.get("height"))
        except UpstreamFetchError:
            rpc_url = self.rpc_urls.get(chain.chain_id)
            if not rpc_url:
                raise
            logger.warning(
                "HyperSync height unavailable, using RPC fallback",
                chain=chain.name,
            )
            return await self._rpc_block_number(rpc_url)

    async def query_logs(
        self,
        chain: ChainInfo,
        from_block: int,
        to_block: int | None,
        filters: list[LogFilter],
        max_logs: int = 100_000,
        endpoint: str | None = None,
    ) -> LogPage:
        """Fetch one bounded page of logs."""
        base_url = (endpoint or chain.hypersync_url).rstrip("/")
        body: dict[str, Any] = {
            "from_block": from_block,
            "logs": [f.to_query() for f in filters],
            "field_selection": {
                "block": BLOCK_FIELDS,
                "log": LOG_FIELDS,
                "transaction": TRANSACTION_FIELDS,
            },
            "max_num_logs": max_logs,
        }
        if to_block is not None:
            body["to_block"] = to_block

        payload = await self._request("POST", f"{base_url}/query", body)
        page = parse_query_response(chain, payload, from_block)

        logger.debug(
            "HyperSync page fetched",
            chain=chain.name,
            from_block=from_block,
            next_block=page.next_block,
            logs=len(page.logs),
        )
        return page

    async def close(self) -> None:
        await self.session.aclose()
