from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class ChainProvider(Provider):
    """Provider for reading from and submitting to an EVM chain"""

    endpoint_url: str

    @abstractmethod
    async def chain_id(self) -> int:
        """Chain ID reported by the endpoint"""
        pass

    @abstractmethod
    async def block_number(self) -> int:
        """Height of the latest block"""
        pass

    @abstractmethod
    async def get_logs(self, log_filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Logs matching an eth_getLogs filter"""
        pass

    @abstractmethod
    async def call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        """Execute a read-only call and return the raw hex result"""
        pass

    @abstractmethod
    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Submit a transaction signed by the endpoint's account; returns the hash"""
        pass

    @abstractmethod
    async def send_raw_transaction(self, raw_tx: str) -> str:
        """Submit a pre-signed transaction; returns the hash"""
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt for a mined transaction, None while pending"""
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """Nonce of the next transaction from ``address``"""
        pass

    @abstractmethod
    async def get_block(self, block: Union[int, str], full_transactions: bool = False) -> Optional[Dict[str, Any]]:
        """Block by height or tag ('latest', 'pending'), None if unknown"""
        pass

    async def close(self) -> None:
        """Release transport resources"""
        return None
