"""
JSON-RPC Provider

Speaks JSON-RPC 2.0 to an EVM endpoint over one pooled httpx client. Every
failure, whether transport, HTTP status, error object or a malformed result,
surfaces as a ServiceError.
"""

import itertools
import time
from typing import Any, Dict, List, Optional, Union

import httpx

from ..core.recovery.errors import ErrorCategory, ErrorCode, ServiceError
from .base import ChainProvider


def _to_int(value: Any, method: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
        except ValueError:
            pass
    raise ServiceError(
        f"{method} returned no readable quantity: {value!r}",
        code=ErrorCode.RPC_ERROR,
        details={"method": method, "result": value},
        category=ErrorCategory.PROVIDER,
    )


class JsonRpcProvider(ChainProvider):
    """JSON-RPC 2.0 provider over HTTP for EVM endpoints"""

    name = "json-rpc"
    timeout_s = 30

    def __init__(
        self,
        endpoint_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not endpoint_url or not endpoint_url.lower().startswith(("http://", "https://")):
            raise ValueError(f"Unsupported RPC endpoint URL: {endpoint_url!r}")
        self.endpoint_url = endpoint_url
        if timeout is not None:
            self.timeout_s = timeout
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(
            timeout=self.timeout_s,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def ready(self) -> bool:
        return not self._client.is_closed

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "unavailable", "reason": "Provider closed"}

        started = time.perf_counter()
        try:
            height = await self.block_number()
        except Exception as e:
            return {"status": "error", "reason": str(e)}
        return {
            "status": "healthy",
            "latency_ms": int((time.perf_counter() - started) * 1000),
            "block_number": height,
        }

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Send one JSON-RPC request and return its ``result`` member."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(self.endpoint_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ServiceError.wrap(
                e,
                f"{method} failed with HTTP {e.response.status_code}",
                ErrorCode.RPC_TRANSPORT_ERROR,
                method=method,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            error = ServiceError.wrap(
                e,
                f"{method} transport failure",
                ErrorCode.RPC_TRANSPORT_ERROR,
                method=method,
            )
            if isinstance(e, httpx.TimeoutException):
                error.category = ErrorCategory.TIMEOUT
            else:
                error.category = ErrorCategory.NETWORK
            error.retryable = True
            raise error from e
        except ValueError as e:
            raise ServiceError.wrap(
                e,
                f"{method} returned a non-JSON response",
                ErrorCode.RPC_TRANSPORT_ERROR,
                method=method,
            ) from e

        if not isinstance(data, dict):
            raise ServiceError(
                f"{method} returned an unexpected payload",
                code=ErrorCode.RPC_TRANSPORT_ERROR,
                details={"method": method, "payload": data},
            )

        if data.get("error"):
            rpc_error = data["error"]
            if not isinstance(rpc_error, dict):
                rpc_error = {"message": str(rpc_error)}
            message = rpc_error.get("message") or "JSON-RPC error"
            error = ServiceError(
                f"{method}: {message}",
                code=ErrorCode.RPC_ERROR,
                details={
                    "method": method,
                    "rpc_code": rpc_error.get("code"),
                    "data": rpc_error.get("data"),
                },
                category=ErrorCategory.PROVIDER,
            )
            # Reverts and funding problems will fail the same way on every attempt
            lowered = message.lower()
            if "revert" in lowered or "insufficient funds" in lowered:
                error.category = (
                    ErrorCategory.TRANSACTION_REVERTED if "revert" in lowered else ErrorCategory.INSUFFICIENT_FUNDS
                )
                error.retryable = False
            raise error

        return data.get("result")

    async def chain_id(self) -> int:
        return _to_int(await self.request("eth_chainId"), "eth_chainId")

    async def block_number(self) -> int:
        return _to_int(await self.request("eth_blockNumber"), "eth_blockNumber")

    async def get_logs(self, log_filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        params = dict(log_filter)
        for key in ("fromBlock", "toBlock"):
            if isinstance(params.get(key), int):
                params[key] = hex(params[key])
        result = await self.request("eth_getLogs", [params])
        return list(result or [])

    async def call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        return await self.request("eth_call", [tx, block])

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        return await self.request("eth_sendTransaction", [tx])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.request("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return _to_int(
            await self.request("eth_getTransactionCount", [address, block]),
            "eth_getTransactionCount",
        )

    async def get_block(self, block: Union[int, str], full_transactions: bool = False) -> Optional[Dict[str, Any]]:
        tag = hex(block) if isinstance(block, int) else block
        return await self.request("eth_getBlockByNumber", [tag, full_transactions])

    async def close(self) -> None:
        await self._client.aclose()
