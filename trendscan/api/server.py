"""HTTP surface of the token scoring service."""

import math
import re
from typing import Any

import structlog
from flask import Flask, abort, jsonify, request
from werkzeug.exceptions import HTTPException

from ..core.errors import CacheError, NoDataError, UpstreamFetchError
from ..runner.pipeline import (
    DEFAULT_DISCOVERY_DAYS,
    MAX_NEW_TOKENS,
    NEW_TOKEN_DAYS,
    REFRESH_DAYS,
    REFRESH_MAX_TOKENS,
    SEED_DAYS,
    SEED_MAX_TOKENS,
    TRENDING_LIMIT,
    UPDATE_ALL_CONCURRENCY,
    TrendingPipeline,
)
from .loop import LoopThread

logger = structlog.get_logger(__name__)

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

BACKGROUND_NOTE = "Processing in background. Check server logs for progress."

SCORE_WEIGHTS = {
    "activityWeight": "25%",
    "liquidityWeight": "20%",
    "distributionWeight": "15%",
    "momentumWeight": "10%",
    "buyVsSellWeight": "10%",
    "priceChangeWeight": "50% of 24h change",
}


def _params() -> dict[str, Any]:
    """Query string overlaid with the JSON body, if any."""
    params: dict[str, Any] = dict(request.args)
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        params.update(body)
    return params


def _positive_number(params: dict[str, Any], name: str, default: float) -> float:
    value = params.get(name)
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        abort(400, description=f"{name} must be a number")
    if not math.isfinite(number) or number <= 0:
        abort(400, description=f"{name} must be positive")
    return number


def _positive_int(params: dict[str, Any], name: str, default: int) -> int:
    number = _positive_number(params, name, default)
    if number != int(number):
        abort(400, description=f"{name} must be an integer")
    return int(number)


def _address(address: str) -> str:
    if not ADDRESS_RE.match(address):
        abort(400, description="Invalid token address")
    return address.lower()


def create_app(pipeline: TrendingPipeline, bridge: LoopThread) -> Flask:
    """Build the Flask app.

    Args:
        pipeline: Pipeline whose operations back the routes
        bridge: Event loop the pipeline runs on

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(NoDataError)
    def handle_no_data(e: NoDataError):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(Exception)
    def handle_error(e: Exception):
        logger.error(
            "Request failed",
            path=request.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        if isinstance(e, UpstreamFetchError):
            message = "Upstream request failed"
        elif isinstance(e, CacheError):
            message = "Token cache unavailable"
        else:
            message = "Internal server error"
        return jsonify({"error": message}), 500

    # === API Routes ===

    @app.route("/", methods=["GET"])
    def index():
        return "trendscan API is running"

    @app.route("/token-addresses", methods=["GET", "POST"])
    def token_addresses():
        params = _params()
        days = _positive_number(params, "days", DEFAULT_DISCOVERY_DAYS)
        endpoint = params.get("hypersyncurl") or None
        if endpoint is not None:
            logger.info("Using alternate scanning endpoint", endpoint=endpoint)

        tokens = bridge.run(pipeline.discover_tokens(days, endpoint=endpoint))
        return jsonify([t.model_dump(mode="json", by_alias=True) for t in tokens])

    @app.route("/token-metadata/<address>", methods=["GET", "POST"])
    def token_metadata(address: str):
        address = _address(address)
        chain = _params().get("chain") or None

        metadata = bridge.run(pipeline.fetch_metadata(address, chain=chain))
        if metadata is None:
            return jsonify(None)
        return jsonify(metadata.model_dump(mode="json", by_alias=True))

    @app.route("/transactions/<address>", methods=["GET", "POST"])
    def transactions(address: str):
        address = _address(address)
        endpoint = _params().get("hypersyncurl") or None

        bundle = bridge.run(pipeline.fetch_transactions(address, endpoint=endpoint))
        return jsonify(bundle.model_dump(mode="json", by_alias=True))

    @app.route("/dbinit", methods=["POST"])
    def dbinit():
        params = _params()
        max_tokens = _positive_int(params, "maxTokens", SEED_MAX_TOKENS)
        days = _positive_number(params, "days", SEED_DAYS)

        total, tokens = bridge.run(pipeline.recent_tokens(days, max_tokens))
        bridge.submit(pipeline.seed_cache(tokens), name="dbinit")
        return jsonify({
            "message": "Database initialization started",
            "totalTokens": total,
            "processing": len(tokens),
            "days": days,
            "note": BACKGROUND_NOTE,
        })

    @app.route("/refresh-tokens", methods=["POST"])
    def refresh_tokens():
        params = _params()
        max_tokens = _positive_int(params, "maxTokens", REFRESH_MAX_TOKENS)
        days = _positive_number(params, "days", REFRESH_DAYS)

        total, tokens = bridge.run(pipeline.recent_tokens(days, max_tokens))
        bridge.submit(pipeline.refresh_tokens(tokens), name="refresh-tokens")
        return jsonify({
            "message": "Token refresh started",
            "totalTokens": total,
            "processing": len(tokens),
            "days": days,
            "note": BACKGROUND_NOTE,
        })

    @app.route("/update-all-scores", methods=["POST"])
    def update_all_scores():
        concurrency = _positive_int(_params(), "concurrency", UPDATE_ALL_CONCURRENCY)

        keys = bridge.run(pipeline.store.list_keys())
        if not keys:
            return jsonify({
                "message": "No tokens in database. Use /dbinit first.",
                "tokensUpdated": 0,
            })

        bridge.submit(
            pipeline.update_all_scores(concurrency=concurrency), name="update-all-scores"
        )
        return jsonify({
            "message": "Full database update started",
            "totalTokens": len(keys),
            "estimatedTime": f"{math.ceil(len(keys) / concurrency / 60)} minutes",
            "note": BACKGROUND_NOTE,
        })

    @app.route("/add-new-tokens", methods=["POST"])
    def add_new_tokens():
        params = _params()
        days = _positive_number(params, "days", NEW_TOKEN_DAYS)
        max_new_tokens = _positive_int(params, "maxNewTokens", MAX_NEW_TOKENS)

        bridge.submit(
            pipeline.add_new_tokens(days=days, max_new_tokens=max_new_tokens),
            name="add-new-tokens",
        )
        return jsonify({
            "message": "Checking for new tokens...",
            "days": days,
            "maxNewTokens": max_new_tokens,
            "note": BACKGROUND_NOTE,
        })

    @app.route("/trending-tokens", methods=["GET"])
    def trending_tokens():
        params = _params()
        limit = _positive_int(params, "limit", TRENDING_LIMIT)
        chain = params.get("chain") or None

        return jsonify(bridge.run(pipeline.trending_tokens(limit=limit, chain=chain)))

    @app.route("/debug/analyze/<address>", methods=["GET"])
    def debug_analyze(address: str):
        address = _address(address)

        analysis = bridge.run(pipeline.analyze_token(address))
        metrics = analysis.metrics
        return jsonify({
            "address": address,
            "trendingScore": analysis.trending_score,
            "breakdown": {
                "activityScore": metrics.activity_score,
                "liquidityHealthScore": metrics.liquidity_health_score,
                "momentumScore": metrics.momentum_score,
                "distributionScore": metrics.distribution_score,
                "buyVsSellRatio": metrics.buy_vs_sell_ratio,
                "priceChange24h": metrics.price_change_24h,
            },
            "formula": SCORE_WEIGHTS,
            "rawMetrics": metrics.model_dump(mode="json", by_alias=True),
            "stats": analysis.stats.model_dump(mode="json", by_alias=True),
            "tokenData": analysis.metadata.model_dump(mode="json", by_alias=True),
        })

    @app.route("/stats", methods=["GET"])
    def stats():
        return jsonify(bridge.run(pipeline.chain_stats()))

    @app.route("/analyze-wallets/<address>", methods=["GET"])
    def analyze_wallets(address: str):
        address = _address(address)

        analysis = bridge.run(pipeline.analyze_wallets(address))
        return jsonify(analysis.model_dump(mode="json", by_alias=True))

    return app
