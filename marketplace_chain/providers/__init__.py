from .base import ChainProvider, Provider
from .json_rpc import JsonRpcProvider

__all__ = ["Provider", "ChainProvider", "JsonRpcProvider"]
