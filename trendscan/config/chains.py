"""Static registry of supported chains."""

from ..core.types import ChainInfo

ETHEREUM = ChainInfo(
    chain_id=1,
    name="Ethereum",
    block_time=12.0,
    hypersync_url="https://eth.hypersync.xyz",
    dexscreener_id="ethereum",
)
BASE = ChainInfo(
    chain_id=8453,
    name="Base",
    block_time=2.0,
    hypersync_url="https://base.hypersync.xyz",
    dexscreener_id="base",
)
ARBITRUM = ChainInfo(
    chain_id=42161,
    name="Arbitrum",
    block_time=0.25,
    hypersync_url="https://arbitrum.hypersync.xyz",
    dexscreener_id="arbitrum",
)
OPTIMISM = ChainInfo(
    chain_id=10,
    name="Optimism",
    block_time=2.0,
    hypersync_url="https://optimism.hypersync.xyz",
    dexscreener_id="optimism",
)
POLYGON = ChainInfo(
    chain_id=137,
    name="Polygon",
    block_time=2.0,
    hypersync_url="https://polygon.hypersync.xyz",
    dexscreener_id="polygon",
)
BSC = ChainInfo(
    chain_id=56,
    name="BSC",
    block_time=3.0,
    hypersync_url="https://bsc.hypersync.xyz",
    dexscreener_id="bsc",
)

DEFAULT_CHAINS: tuple[ChainInfo, ...] = (
    ETHEREUM,
    BASE,
    ARBITRUM,
    OPTIMISM,
    POLYGON,
    BSC,
)

_BY_ID = {chain.chain_id: chain for chain in DEFAULT_CHAINS}
_BY_NAME = {chain.name.lower(): chain for chain in DEFAULT_CHAINS}


def get_chain(chain_id: int) -> ChainInfo:
    """Look up a chain by id.

    Raises:
        KeyError: If the chain is not registered
    """
    try:
        return _BY_ID[chain_id]
    except KeyError:
        raise KeyError(f"Unsupported chain id: {chain_id}") from None


def get_chain_by_name(name: str) -> ChainInfo | None:
    return _BY_NAME.get(name.lower())


def select_chains(chain_ids: list[int] | None) -> list[ChainInfo]:
    """Return registered chains in registry order, optionally restricted."""
    if not chain_ids:
        return list(DEFAULT_CHAINS)
    wanted = set(chain_ids)
    return [chain for chain in DEFAULT_CHAINS if chain.chain_id in wanted]
