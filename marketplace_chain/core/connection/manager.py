"""
Connection management for the chain RPC endpoint.

Resolves the endpoint from configuration, builds the provider and validates
it. Configuration problems are not transient, so nothing here retries.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ...config import Settings
from ...logging_config import mask_endpoint
from ...providers.base import ChainProvider
from ...providers.json_rpc import JsonRpcProvider
from ..recovery.errors import ErrorCode, ServiceError

ProviderFactory = Callable[..., Optional[ChainProvider]]


@dataclass
class Connection:
    """A live link to one RPC endpoint."""

    endpoint_url: str
    provider: ChainProvider
    chain_id: Optional[int] = None
    ready: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    async def close(self) -> None:
        if not self.ready:
            return
        self.ready = False
        await self.provider.close()


class ConnectionManager:
    """
    Owns the Connection for the lifetime of the process.

    ``initialize`` creates it once; ``close`` tears it down at shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        provider_factory: Optional[ProviderFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.provider_factory = provider_factory or JsonRpcProvider
        self.logger = logger or logging.getLogger(__name__)
        self._connection: Optional[Connection] = None

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    async def initialize(self, verify_chain: bool = False) -> Connection:
        """
        Build and validate the connection.

        Raises:
            ServiceError: MISSING_RPC_URL when no endpoint resolves,
                PROVIDER_INITIALIZATION_ERROR when the provider cannot be built
                or reports it is not ready.
        """
        if self._connection is not None and self._connection.ready:
            return self._connection

        connection = await self.open()
        if verify_chain:
            await self._verify_chain(connection)
        self._connection = connection
        return connection

    async def open(self) -> Connection:
        """Build a fresh Connection without replacing the current one."""
        rpc_url = self.settings.resolve_rpc_url()
        if not rpc_url:
            raise ServiceError(
                "RPC URL is missing. Set SEPOLIA_RPC_URL or configure the network RPC_URL.",
                code=ErrorCode.MISSING_RPC_URL,
                details={"network": self.settings.network},
            )

        try:
            provider = self.provider_factory(rpc_url, timeout=self.settings.request_timeout_seconds)
        except Exception as e:
            raise ServiceError.wrap(
                e,
                "Failed to initialize JSON-RPC provider",
                ErrorCode.PROVIDER_INITIALIZATION_ERROR,
                endpoint=mask_endpoint(rpc_url),
            ) from e

        if provider is None:
            raise ServiceError(
                "Failed to initialize JSON-RPC provider",
                code=ErrorCode.PROVIDER_INITIALIZATION_ERROR,
                details={"endpoint": mask_endpoint(rpc_url)},
            )

        if not await provider.ready():
            await provider.close()
            raise ServiceError(
                "JSON-RPC provider is not ready",
                code=ErrorCode.PROVIDER_INITIALIZATION_ERROR,
                details={"endpoint": mask_endpoint(rpc_url)},
            )

        connection = Connection(
            endpoint_url=rpc_url,
            provider=provider,
            chain_id=self.settings.chain_id,
            ready=True,
        )
        self.logger.info(f"Provider successfully initialized: {mask_endpoint(rpc_url)}")
        return connection

    def replace(self, connection: Connection) -> Optional[Connection]:
        """Swap in a new connection; returns the previous one for the caller to close."""
        previous = self._connection
        self._connection = connection
        return previous

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self.logger.info("Provider connection closed")
        self._connection = None

    async def _verify_chain(self, connection: Connection) -> None:
        expected = self.settings.chain_id
        try:
            actual = await connection.provider.chain_id()
        except ServiceError:
            await connection.close()
            raise
        if expected is not None and actual != expected:
            await connection.close()
            raise ServiceError(
                f"Endpoint serves chain {actual}, expected {expected}",
                code=ErrorCode.PROVIDER_INITIALIZATION_ERROR,
                details={"expected_chain_id": expected, "actual_chain_id": actual},
            )
        connection.chain_id = actual
