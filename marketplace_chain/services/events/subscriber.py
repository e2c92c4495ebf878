"""
Block and contract event subscriptions.

A single polling task per subscriber watches the connection for new blocks
and for logs emitted by the bound contract, and hands them to the
registered handlers in the order they were observed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Optional

import structlog

from ...constants import BLOCK_EVENT
from ...core.contract.abi import DecodedLog
from ...core.contract.binding import ContractBinding
from ...core.recovery.errors import ErrorCode, ServiceError
from .models import (
    EVENT_RECORDS,
    BlockHandler,
    EventHandler,
    Subscription,
    SubscriptionKind,
    normalize_event,
)

event_log = structlog.stdlib.get_logger("chain.events")


class EventSubscriber:
    """
    Delivers new block heights and normalized contract events to handlers.

    Usage:
        subscriber = EventSubscriber(binding)
        subscriber.subscribe_blocks(on_block)
        subscriber.subscribe_contract_event("DataPurchased", on_purchase)
        await subscriber.start()

    Subscriptions stay active until the subscriber is stopped with its
    connection. A failing handler is logged and never stops the loop.
    """

    def __init__(
        self,
        binding: ContractBinding,
        poll_interval: float = 4.0,
        max_block_range: int = 500,
        logger: Optional[logging.Logger] = None,
    ):
        self.binding = binding
        self.poll_interval = poll_interval
        self.max_block_range = max(1, max_block_range)
        self.logger = logger or logging.getLogger(__name__)

        self._subscriptions: List[Subscription] = []
        self._last_block: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._poll_lock = asyncio.Lock()

    # ---------------------------
    # Registration
    # ---------------------------
    def subscribe_blocks(self, handler: BlockHandler) -> Subscription:
        """Call ``handler(block_height)`` once per new block, in order."""
        subscription = Subscription(kind=SubscriptionKind.BLOCK, name=BLOCK_EVENT, handler=handler)
        self._subscriptions.append(subscription)
        self.logger.info(f"Registered block subscription {subscription.id}")
        return subscription

    def subscribe_contract_event(self, name: str, handler: EventHandler) -> Subscription:
        """Call ``handler(record)`` with the normalized record of every matching log."""
        if name not in EVENT_RECORDS:
            raise ServiceError(
                f"Unknown contract event '{name}'",
                code=ErrorCode.UNKNOWN_EVENT,
                details={"event": name, "known": sorted(EVENT_RECORDS)},
            )
        # Must also be part of the bound interface
        self.binding.interface.get_event(name)

        subscription = Subscription(kind=SubscriptionKind.CONTRACT_EVENT, name=name, handler=handler)
        self._subscriptions.append(subscription)
        self.logger.info(f"Registered {name} subscription {subscription.id}")
        return subscription

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)

    @property
    def last_block(self) -> Optional[int]:
        return self._last_block

    @property
    def is_running(self) -> bool:
        return self._running

    def clone_onto(self, binding: ContractBinding) -> "EventSubscriber":
        """New subscriber on ``binding`` carrying every subscription and the block cursor."""
        clone = EventSubscriber(
            binding,
            poll_interval=self.poll_interval,
            max_block_range=self.max_block_range,
            logger=self.logger,
        )
        clone._subscriptions = list(self._subscriptions)
        clone._last_block = self._last_block
        return clone

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="event-subscriber-loop")
        self.logger.info(
            f"Event subscriber started for {self.binding.address} "
            f"({len(self._subscriptions)} subscriptions, every {self.poll_interval}s)"
        )

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """
        Stop polling. A poll already delivering is given ``drain_timeout``
        seconds to finish before the loop is cancelled.
        """
        if not self._running:
            return
        self._running = False
        if self._task:
            drained = False
            try:
                await asyncio.wait_for(self._poll_lock.acquire(), drain_timeout)
                drained = True
            except asyncio.TimeoutError:
                self.logger.warning(f"In-flight poll still running after {drain_timeout}s; cancelling it")
            try:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            finally:
                if drained:
                    self._poll_lock.release()
            self._task = None
        self.logger.info("Event subscriber stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self.logger.warning(f"Event poll failed, retrying next tick: {exc}")
            await asyncio.sleep(self.poll_interval)

    # ---------------------------
    # Polling
    # ---------------------------
    async def poll_once(self) -> int:
        """
        Observe the chain once and deliver what is new.

        The first poll delivers only the current height. Later polls deliver
        every height after the last one seen (at most ``max_block_range``).
        Logs are fetched before anything is delivered, so a failed fetch
        leaves the cursor untouched and the range is retried next time.

        Returns the number of notifications delivered.
        """
        async with self._poll_lock:
            provider = self.binding.connection.provider
            latest = await provider.block_number()

            if self._last_block is None:
                from_block = to_block = latest
            elif latest < self._last_block:
                self.logger.warning(
                    f"Endpoint reported block {latest} behind last seen {self._last_block}; skipping"
                )
                return 0
            elif latest == self._last_block:
                return 0
            else:
                from_block = self._last_block + 1
                to_block = min(latest, self._last_block + self.max_block_range)

            logs_by_block = await self._fetch_logs(from_block, to_block)

            delivered = 0
            for height in range(from_block, to_block + 1):
                # Claimed before delivery: an interrupted height is never handed out again
                self._last_block = height
                delivered += await self._deliver_block(height)
                for decoded in logs_by_block.get(height, []):
                    delivered += await self._deliver_event(decoded)
            return delivered

    async def _fetch_logs(self, from_block: int, to_block: int) -> Dict[int, List[DecodedLog]]:
        event_names = sorted({s.name for s in self._subscriptions if s.kind == SubscriptionKind.CONTRACT_EVENT})
        if not event_names:
            return {}

        topics = {self.binding.event_topic(name): name for name in event_names}
        raw_logs = await self.binding.connection.provider.get_logs(
            {
                "address": self.binding.address,
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [list(topics)],
            }
        )

        decoded_logs: List[DecodedLog] = []
        for raw in raw_logs:
            if raw.get("removed"):
                continue
            if str(raw.get("address", "")).lower() != self.binding.address.lower():
                continue
            log_topics = raw.get("topics") or []
            if not log_topics or str(log_topics[0]).lower() not in topics:
                continue
            try:
                decoded_logs.append(self.binding.decode_log(raw))
            except ServiceError as exc:
                self.logger.error(f"Skipping undecodable log {raw.get('transactionHash')}: {exc}")

        by_block: Dict[int, List[DecodedLog]] = {}
        for decoded in sorted(decoded_logs, key=lambda d: (d.block_number or 0, d.log_index or 0)):
            height = decoded.block_number if decoded.block_number is not None else to_block
            by_block.setdefault(height, []).append(decoded)
        return by_block

    async def _deliver_block(self, height: int) -> int:
        handlers = [s for s in self._subscriptions if s.kind == SubscriptionKind.BLOCK]
        if not handlers:
            return 0
        event_log.info("block_received", block_number=height)
        for subscription in handlers:
            await self._dispatch(subscription, height)
        return 1

    async def _deliver_event(self, decoded: DecodedLog) -> int:
        handlers = [
            s for s in self._subscriptions
            if s.kind == SubscriptionKind.CONTRACT_EVENT and s.name == decoded.event
        ]
        if not handlers:
            return 0
        try:
            record = normalize_event(decoded.event, decoded)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                f"Failed to normalize {decoded.event} log in {decoded.transaction_hash}: {exc}",
                exc_info=True,
            )
            return 0

        event_log.info(
            "contract_event_received",
            event_name=decoded.event,
            block_number=decoded.block_number,
            transaction_hash=decoded.transaction_hash,
        )
        for subscription in handlers:
            await self._dispatch(subscription, record)
        return 1

    async def _dispatch(self, subscription: Subscription, payload: Any) -> None:
        try:
            result = subscription.handler(payload)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                f"Handler {subscription.handler_name} for {subscription.name} failed: {exc}",
                exc_info=True,
            )
