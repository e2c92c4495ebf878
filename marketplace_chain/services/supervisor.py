"""
Connection supervision.

Checks the endpoint on an interval and rebuilds the connection, contract
binding and subscriptions after repeated failed checks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .transaction_service import TransactionService


@dataclass(slots=True)
class SupervisorState:
    status: str = "idle"
    consecutive_failures: int = 0
    reconnects: int = 0
    last_check: Optional[datetime] = None
    last_error: Optional[str] = None


class ConnectionSupervisor:
    """Background health monitor for a TransactionService connection."""

    def __init__(
        self,
        service: TransactionService,
        interval_seconds: Optional[float] = None,
        failure_threshold: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.service = service
        self.interval_seconds = interval_seconds or service.settings.health_check_interval_seconds
        self.failure_threshold = failure_threshold or service.settings.reconnect_failure_threshold
        self.logger = logger or logging.getLogger(__name__)
        self.state = SupervisorState()
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.state.status = "running"
        self._task = asyncio.create_task(self._run_loop(), name="connection-supervisor")
        self.logger.info(
            "Connection supervisor started (every %ss, reconnect after %d failures)",
            self.interval_seconds,
            self.failure_threshold,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.state.status = "stopped"
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                await self.check_once()
        except asyncio.CancelledError:
            return
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Supervisor loop crashed: %s", exc, exc_info=True)
            self._running = False
            self.state.status = "crashed"

    async def check_once(self) -> bool:
        """Check once; returns True when the connection is healthy after the check."""
        self.state.last_check = datetime.now(timezone.utc)
        healthy = await self._check_endpoint()
        if healthy:
            if self.state.consecutive_failures:
                self.logger.info("Connection healthy again after %d failed checks", self.state.consecutive_failures)
            self.state.consecutive_failures = 0
            self.state.last_error = None
            return True

        self.state.consecutive_failures += 1
        self.logger.warning(
            "Connection check failed (%d/%d): %s",
            self.state.consecutive_failures,
            self.failure_threshold,
            self.state.last_error,
        )
        if self.state.consecutive_failures < self.failure_threshold:
            return False

        try:
            await self.service.reconnect()
        except Exception as exc:  # noqa: BLE001
            self.state.last_error = str(exc)
            self.logger.error("Reconnect failed: %s", exc)
            return False

        self.state.reconnects += 1
        self.state.consecutive_failures = 0
        self.state.last_error = None
        return True

    async def _check_endpoint(self) -> bool:
        if not self.service.is_ready:
            self.state.last_error = "service not initialized"
            return False
        status = await self.service.connection.provider.health_check()
        if status.get("status") == "healthy":
            return True
        self.state.last_error = status.get("reason") or status.get("status")
        return False
