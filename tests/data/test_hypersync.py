"""Tests for the HyperSync log client."""

import asyncio
import json

import httpx
import pytest
import respx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from trendscan.config.chains import BASE, ETHEREUM
from trendscan.core.errors import UpstreamFetchError
from trendscan.core.types import LogFilter
from trendscan.data.hypersync import HyperSyncClient, parse_query_response, to_int

TRANSFER = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
TOKEN = "0x" + "a" * 40
HYPERSYNC = "https://eth.hypersync.xyz"


@pytest.fixture
def sample_query_response():
    """Sample HyperSync query response."""
    return {
        "data": [
            {
                "blocks": [{"number": 100, "timestamp": "0x6553f100"}],
                "transactions": [
                    {
                        "block_number": 100,
                        "transaction_index": 2,
                        "gas_used": "0x5208",
                        "gas_price": "0x3b9aca00",
                    }
                ],
                "logs": [
                    {
                        "block_number": 100,
                        "log_index": 7,
                        "transaction_index": 2,
                        "transaction_hash": "0xabc",
                        "address": TOKEN.upper().replace("0X", "0x"),
                        "data": "0x" + format(5, "064x"),
                        "topic0": TRANSFER.upper().replace("0X", "0x"),
                        "topic1": "0x" + "0" * 24 + "1" * 40,
                        "topic2": "0x" + "0" * 24 + "2" * 40,
                        "topic3": None,
                    }
                ],
            }
        ],
        "next_block": 101,
        "archive_height": 200,
    }


@pytest.fixture
def client():
    client = HyperSyncClient(bearer_token="secret", rpc_urls={1: "https://rpc.example/v1"})
    # no backoff in tests
    client.retry_config = AsyncRetrying(
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
        reraise=True,
    )
    return client


class TestParsing:
    """Test response mapping."""

    def test_to_int(self):
        """Test integer parsing."""
        assert to_int("0x10") == 16
        assert to_int("42") == 42
        assert to_int(7) == 7
        assert to_int(None, default=-1) == -1
        assert to_int("garbage") == 0

    def test_parse_query_response(self, sample_query_response):
        """Test parse query response."""
        page = parse_query_response(ETHEREUM, sample_query_response, from_block=90)

        assert page.next_block == 101
        assert page.archive_height == 200
        log = page.logs[0]
        assert log.chain_id == 1
        assert log.block_number == 100
        assert log.timestamp == 0x6553F100
        assert log.address == TOKEN
        assert log.topics[0] == TRANSFER
        assert len(log.topics) == 3
        assert log.tx_index == 2
        assert log.log_index == 7
        assert log.gas_used == 21000
        assert log.gas_price == 10**9

    def test_next_block_defaults_after_last_log(self, sample_query_response):
        """Test next block defaults after last log."""
        del sample_query_response["next_block"]

        page = parse_query_response(ETHEREUM, sample_query_response, from_block=90)

        assert page.next_block == 101

    def test_empty_response(self):
        """Test empty response."""
        page = parse_query_response(ETHEREUM, {}, from_block=90)

        assert page.logs == []
        assert page.next_block == 91
        assert page.archive_height is None


class TestHyperSyncClient:
    """Test HTTP behaviour."""

    def test_init(self):
        """Test client initialization."""
        client = HyperSyncClient()

        assert client.bearer_token is None
        assert client.rpc_urls == {}
        assert client.rate_limiter.capacity == 300

    @pytest.mark.asyncio
    @respx.mock
    async def test_query_logs(self, client, sample_query_response):
        """Test query logs."""
        route = respx.post(f"{HYPERSYNC}/query").mock(
            return_value=httpx.Response(200, json=sample_query_response)
        )

        page = await client.query_logs(
            ETHEREUM,
            90,
            None,
            [LogFilter(topics=((TRANSFER,),), addresses=(TOKEN,))],
            max_logs=1000,
        )

        assert len(page.logs) == 1
        request = route.calls[0].request
        body = json.loads(request.content)
        assert request.headers["Authorization"] == "Bearer secret"
        assert body["from_block"] == 90
        assert "to_block" not in body
        assert body["max_num_logs"] == 1000
        assert body["logs"] == [{"topics": [[TRANSFER]], "address": [TOKEN]}]
        assert "timestamp" in body["field_selection"]["block"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_endpoint_override(self, client, sample_query_response):
        """Test endpoint override."""
        route = respx.post("https://alt.example/query").mock(
            return_value=httpx.Response(200, json=sample_query_response)
        )

        await client.query_logs(ETHEREUM, 0, 10, [], endpoint="https://alt.example/")

        assert route.called
        assert json.loads(route.calls[0].request.content)["to_block"] == 10

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_height(self, client):
        """Test get height."""
        respx.get(f"{HYPERSYNC}/height").mock(
            return_value=httpx.Response(200, json={"height": 19_000_000})
        )

        assert await client.get_height(ETHEREUM) == 19_000_000

    @pytest.mark.asyncio
    @respx.mock
    async def test_height_falls_back_to_rpc(self, client):
        """Test height falls back to RPC."""
        respx.get(f"{HYPERSYNC}/height").mock(return_value=httpx.Response(503))
        rpc = respx.post("https://rpc.example/v1").mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x10"})
        )

        assert await client.get_height(ETHEREUM) == 16
        assert json.loads(rpc.calls[0].request.content)["method"] == "eth_blockNumber"

    @pytest.mark.asyncio
    @respx.mock
    async def test_height_without_fallback_raises(self):
        """Test height without fallback raises."""
        client = HyperSyncClient()
        respx.get(f"{HYPERSYNC}/height").mock(return_value=httpx.Response(503))

        with pytest.raises(UpstreamFetchError):
            await client.get_height(ETHEREUM)

    @pytest.mark.asyncio
    @respx.mock
    async def test_retries_network_errors(self, client, sample_query_response):
        """Test retries network errors."""
        route = respx.post(f"{HYPERSYNC}/query").mock(
            side_effect=[
                httpx.ConnectError("refused"),
                httpx.Response(200, json=sample_query_response),
            ]
        )

        page = await client.query_logs(ETHEREUM, 90, None, [])

        assert route.call_count == 2
        assert len(page.logs) == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_raise(self, client):
        """Test exhausted retries raise."""
        respx.post(f"{HYPERSYNC}/query").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(UpstreamFetchError):
            await client.query_logs(ETHEREUM, 90, None, [])

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_not_retried(self, client):
        """Test that HTTP errors are not retried."""
        route = respx.post(f"{HYPERSYNC}/query").mock(return_value=httpx.Response(500))

        with pytest.raises(UpstreamFetchError):
            await client.query_logs(ETHEREUM, 90, None, [])

        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_concurrent_requests_keep_own_retry_budget(self, client):
        """Test that parallel requests each get three attempts."""
        client.rpc_urls = {}
        eth = respx.get(f"{HYPERSYNC}/height").mock(side_effect=httpx.ConnectError("refused"))
        base = respx.get("https://base.hypersync.xyz/height").mock(
            side_effect=httpx.ConnectError("refused")
        )

        results = await asyncio.gather(
            client.get_height(ETHEREUM), client.get_height(BASE), return_exceptions=True
        )

        assert all(isinstance(r, UpstreamFetchError) for r in results)
        assert eth.call_count == 3
        assert base.call_count == 3
