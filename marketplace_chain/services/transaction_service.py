"""
Transaction Service

Composition root for the chain layer: one explicit object, built once at
application startup and handed to whatever needs chain access.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, TypeVar

from ..config import Settings
from ..core.connection.manager import Connection, ConnectionManager, ProviderFactory
from ..core.contract.abi import ContractInterface, load_contract_interface
from ..core.contract.binding import ContractBinding, bind
from ..core.execution.nonce_manager import NonceManager, is_nonce_conflict
from ..core.recovery.errors import ErrorCode, ServiceError, is_transient
from ..core.recovery.executor import Operation, RetryExecutor
from ..core.recovery.strategies import RetryPolicy
from ..logging_config import mask_endpoint
from .events.models import BlockHandler, DataPurchasedRecord, EventHandler, Subscription
from .events.subscriber import EventSubscriber

T = TypeVar("T")

# Failures that abort initialization without being re-wrapped
_PASSTHROUGH_CODES = {ErrorCode.MISSING_RPC_URL, ErrorCode.PROVIDER_INITIALIZATION_ERROR}


@dataclass
class _PendingSubmission:
    sender: str
    nonce: Optional[int] = None
    broadcasts: int = 0


def _quantity(value: Any) -> Optional[int]:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
        except ValueError:
            return None
    return None


class TransactionService:
    """
    Connection, contract binding, retries and event subscriptions.

    Usage:
        service = TransactionService(settings)
        await service.initialize()
        count = await service.call("listingCount")
        service.subscribe_contract_event("DataPurchased", on_purchase)
        ...
        await service.shutdown()
    """

    def __init__(
        self,
        settings: Settings,
        provider_factory: Optional[ProviderFactory] = None,
        interface: Optional[ContractInterface] = None,
        executor: Optional[RetryExecutor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.connections = ConnectionManager(settings, provider_factory, logger=self.logger)
        self.executor = executor or RetryExecutor(
            default_policy=settings.retry_policy(),
            max_recorded_writes=settings.write_results_limit,
            write_result_ttl=settings.write_result_ttl_seconds,
        )
        self.nonces = NonceManager()
        self._interface = interface

        self._binding: Optional[ContractBinding] = None
        self._subscriber: Optional[EventSubscriber] = None
        self._swap_lock = asyncio.Lock()

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def initialize(self, start_polling: bool = True) -> None:
        """
        Connect, bind the contract and set up subscriptions as one step.

        Raises:
            ServiceError: MISSING_RPC_URL or PROVIDER_INITIALIZATION_ERROR as
                raised by the connection manager; INITIALIZATION_ERROR wrapping
                any other failure. Nothing stays attached after a failure.
        """
        if self._binding is not None:
            return

        connection: Optional[Connection] = None
        try:
            connection = await self.connections.initialize()
            binding = bind(connection, self.settings.contract_address, self._load_interface())
            subscriber = self._build_subscriber(binding)
            if self.settings.log_chain_events:
                self._install_default_listeners(subscriber)
            if start_polling:
                await subscriber.start()
        except Exception as e:
            self.logger.error(f"Provider initialization error: {e}")
            if connection is not None:
                await self.connections.close()
            if isinstance(e, ServiceError) and e.code in _PASSTHROUGH_CODES:
                raise
            raise ServiceError.wrap(
                e,
                "Failed to initialize provider",
                ErrorCode.INITIALIZATION_ERROR,
            ) from e

        self._binding = binding
        self._subscriber = subscriber
        self.logger.info(
            f"Transaction service ready: contract {binding.address} via {mask_endpoint(connection.endpoint_url)}"
        )

    async def reconnect(self) -> Connection:
        """
        Rebuild the connection, binding and subscriptions.

        The replacement is swapped in only once it is fully built; until then
        the current connection stays in place. The old subscriber finishes
        its in-flight poll before the block cursor is copied, so no height is
        delivered twice.
        """
        self._require_initialized()
        async with self._swap_lock:
            connection = await self.connections.open()
            old_subscriber = self._subscriber
            was_running = old_subscriber.is_running
            await old_subscriber.stop()
            try:
                binding = self._binding.with_connection(connection)
                subscriber = old_subscriber.clone_onto(binding)
                await subscriber.start()
            except Exception:
                await connection.close()
                if was_running:
                    await old_subscriber.start()
                raise

            previous = self.connections.replace(connection)
            self._binding = binding
            self._subscriber = subscriber
            if previous is not None:
                await previous.close()
            self.logger.info(f"Reconnected to {mask_endpoint(connection.endpoint_url)}")
            return connection

    async def shutdown(self) -> None:
        if self._subscriber is not None:
            await self._subscriber.stop()
        await self.connections.close()
        self._binding = None
        self._subscriber = None

    @property
    def is_ready(self) -> bool:
        connection = self.connections.connection
        return self._binding is not None and connection is not None and connection.ready

    @property
    def connection(self) -> Connection:
        self._require_initialized()
        return self._binding.connection

    @property
    def contract(self) -> ContractBinding:
        self._require_initialized()
        return self._binding

    @property
    def subscriber(self) -> EventSubscriber:
        self._require_initialized()
        return self._subscriber

    # ---------------------------
    # Remote operations
    # ---------------------------
    async def execute(
        self,
        operation: Operation[T],
        policy: Optional[RetryPolicy] = None,
        operation_name: str = "operation",
    ) -> T:
        return await self.executor.execute(operation, policy, operation_name)

    async def call(self, function_name: str, *args: Any, policy: Optional[RetryPolicy] = None) -> Any:
        """Read-only contract call with retry; failures surface as ServiceError."""
        function = self.contract.function(function_name)
        return await self.executor.execute_read(
            lambda: self.contract.function(function_name).call(*args),
            self._service_policy(policy),
            operation_name=f"call {function.spec.signature}",
        )

    async def submit(
        self,
        function_name: str,
        *args: Any,
        sender: str,
        idempotency_key: str,
        value: int = 0,
        policy: Optional[RetryPolicy] = None,
    ) -> str:
        """
        State-changing call through the endpoint signer, deduplicated by key.

        One nonce is reserved for the whole retry sequence. Before resending
        after a failed attempt, the chain is searched for a transaction that
        already carries that nonce, so a response lost after the node
        accepted the transaction never leads to a second one.

        Raises:
            ServiceError: TRANSACTION_ERROR when the node reports the nonce as
                used but the earlier submission cannot be located; the nonce
                is in ``details`` for reconciliation.
        """
        function = self.contract.function(function_name)
        pending = _PendingSubmission(sender=sender)

        async def attempt() -> str:
            provider = self.connection.provider
            if pending.nonce is None:
                pending.nonce = await self.nonces.reserve(provider, sender)
            elif pending.broadcasts:
                tx_hash = await self._find_submitted(sender, pending.nonce)
                if tx_hash:
                    self.logger.info(f"Earlier submission with nonce {pending.nonce} found: {tx_hash}")
                    return tx_hash

            pending.broadcasts += 1
            try:
                return await self.contract.function(function_name).transact(
                    *args, sender=sender, value=value, nonce=pending.nonce
                )
            except ServiceError as e:
                if not is_nonce_conflict(e):
                    raise
                if pending.broadcasts == 1:
                    # Taken by someone else; the next attempt reserves a fresh one
                    await self.nonces.release(sender, pending.nonce)
                    pending.nonce = None
                    pending.broadcasts = 0
                    raise
                tx_hash = await self._find_submitted(sender, pending.nonce)
                if tx_hash:
                    return tx_hash
                raise ServiceError(
                    f"Transaction from {sender} with nonce {pending.nonce} was accepted earlier "
                    "but could not be located",
                    code=ErrorCode.TRANSACTION_ERROR,
                    details={"sender": sender, "nonce": pending.nonce},
                    retryable=False,
                ) from e

        try:
            return await self.executor.execute_write(
                attempt,
                idempotency_key,
                self._service_policy(policy),
                operation_name=f"submit {function.spec.signature}",
            )
        finally:
            if pending.nonce is not None:
                await self.nonces.release(sender, pending.nonce)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_interval: float = 2.0,
    ) -> Dict[str, Any]:
        """Poll until the transaction is mined. Timeout raises ServiceError."""
        deadline = time.monotonic() + timeout
        while True:
            receipt = await self.executor.execute_read(
                lambda: self.connection.provider.get_transaction_receipt(tx_hash),
                self._service_policy(None),
                operation_name="eth_getTransactionReceipt",
            )
            if receipt:
                if str(receipt.get("status", "0x1")) in ("0x0", "0"):
                    raise ServiceError(
                        f"Transaction {tx_hash} reverted",
                        code=ErrorCode.TRANSACTION_ERROR,
                        details={"transaction_hash": tx_hash, "receipt": receipt},
                        retryable=False,
                    )
                return receipt
            if time.monotonic() >= deadline:
                raise ServiceError(
                    f"Transaction {tx_hash} not mined within {timeout}s",
                    code=ErrorCode.TRANSACTION_ERROR,
                    details={"transaction_hash": tx_hash},
                )
            await asyncio.sleep(poll_interval)

    # ---------------------------
    # Subscriptions
    # ---------------------------
    def subscribe_blocks(self, handler: BlockHandler) -> Subscription:
        return self.subscriber.subscribe_blocks(handler)

    def subscribe_contract_event(self, name: str, handler: EventHandler) -> Subscription:
        return self.subscriber.subscribe_contract_event(name, handler)

    async def health(self) -> Dict[str, Any]:
        if not self.is_ready:
            return {"status": "unavailable", "ready": False}
        provider_status = await self.connection.provider.health_check()
        return {
            "status": provider_status.get("status", "error"),
            "ready": True,
            "endpoint": mask_endpoint(self.connection.endpoint_url),
            "contract": self.contract.address,
            "provider": provider_status,
            "last_block": self._subscriber.last_block,
            "subscriptions": [s.name for s in self._subscriber.subscriptions],
        }

    # ---------------------------
    # Internals
    # ---------------------------
    def _load_interface(self) -> ContractInterface:
        if self._interface is None:
            self._interface = load_contract_interface(self.settings.contract_abi_path)
        return self._interface

    def _build_subscriber(self, binding: ContractBinding) -> EventSubscriber:
        return EventSubscriber(
            binding,
            poll_interval=self.settings.block_poll_interval_seconds,
            max_block_range=self.settings.max_block_range,
            logger=self.logger,
        )

    def _install_default_listeners(self, subscriber: EventSubscriber) -> None:
        def log_block(block_number: int) -> None:
            self.logger.info(f"New block: {block_number}")

        def log_purchase(record: DataPurchasedRecord) -> None:
            self.logger.info(f"Data purchased: {record.model_dump()}")

        subscriber.subscribe_blocks(log_block)
        if "DataPurchased" in subscriber.binding.interface.events:
            subscriber.subscribe_contract_event("DataPurchased", log_purchase)

    async def _find_submitted(self, sender: str, nonce: int) -> Optional[str]:
        """Hash of the transaction from ``sender`` with ``nonce`` in the pending or a recent block."""
        provider = self.connection.provider
        latest = await provider.block_number()
        oldest = max(latest - self.settings.submit_lookup_blocks, 0)

        for block in ["pending", *range(latest, oldest - 1, -1)]:
            found = await provider.get_block(block, full_transactions=True)
            for tx in (found or {}).get("transactions") or []:
                if not isinstance(tx, dict):
                    continue
                if str(tx.get("from", "")).lower() != sender.lower():
                    continue
                if _quantity(tx.get("nonce")) == nonce:
                    return tx.get("hash")
        return None

    def _require_initialized(self) -> None:
        if self._binding is None:
            raise ServiceError(
                "Transaction service used before initialize()",
                code=ErrorCode.NOT_INITIALIZED,
            )

    def _service_policy(self, policy: Optional[RetryPolicy]) -> RetryPolicy:
        """Uniform ServiceErrors, and no retries for failures that will repeat (reverts, bad input)."""
        policy = policy or self.executor.default_policy
        return replace(policy, wrap_errors=True, retry_if=policy.retry_if or is_transient)
