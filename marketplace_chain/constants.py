"""Network and unit constants shared across the chain service."""

from typing import Any, Dict

# Per-network defaults. Environment values take precedence over the RPC_URL here.
NETWORK_CONFIG: Dict[str, Dict[str, Any]] = {
    "SEPOLIA": {
        "NAME": "sepolia",
        "CHAIN_ID": 11155111,
        "RPC_URL": "",
        "EXPLORER_URL": "https://sepolia.etherscan.io",
    },
    "MAINNET": {
        "NAME": "mainnet",
        "CHAIN_ID": 1,
        "RPC_URL": "",
        "EXPLORER_URL": "https://etherscan.io",
    },
}

DEFAULT_NETWORK = "SEPOLIA"

ETHER_DECIMALS = 18
BLOCK_EVENT = "block"


__all__ = [
    "NETWORK_CONFIG",
    "DEFAULT_NETWORK",
    "ETHER_DECIMALS",
    "BLOCK_EVENT",
]
