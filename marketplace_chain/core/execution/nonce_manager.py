"""
Nonce management for concurrent submissions.

Every submission is pinned to one nonce for its whole retry sequence, so a
resend after a lost response replaces nothing and adds nothing: the node
either accepts the same transaction or reports the nonce as used.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from ...providers.base import ChainProvider
from ..recovery.errors import ErrorCode, ServiceError

# Node messages meaning a transaction with this nonce is already known
_NONCE_USED_MARKERS = (
    "already known",
    "known transaction",
    "nonce too low",
    "replacement transaction underpriced",
)


def is_nonce_conflict(error: BaseException) -> bool:
    """True when the node rejected a send because its nonce is taken."""
    if not isinstance(error, ServiceError) or error.code != ErrorCode.RPC_ERROR:
        return False
    message = error.message.lower()
    return any(marker in message for marker in _NONCE_USED_MARKERS)


@dataclass
class NonceState:
    """Tracks nonce state for one sending address."""
    address: str
    chain_nonce: int                            # Pending count last reported by the node
    reserved_nonces: Set[int] = field(default_factory=set)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NonceManager:
    """
    Hands out nonces to submissions from the same sender without collisions.

    The node's pending transaction count is the source of truth; nonces held
    by submissions still in flight are skipped until they are released.
    """

    def __init__(self):
        self._states: Dict[str, NonceState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def reserve(self, provider: ChainProvider, address: str) -> int:
        """
        Reserve the next free nonce for ``address``.

        Returns:
            A nonce no other in-flight submission from this address holds.
        """
        key = address.lower()
        async with self._get_lock(key):
            chain_nonce = await provider.get_transaction_count(address, "pending")

            state = self._states.get(key)
            if state is None:
                state = self._states[key] = NonceState(address=key, chain_nonce=chain_nonce)
            else:
                state.chain_nonce = chain_nonce
                state.last_updated = datetime.now(timezone.utc)
                state.reserved_nonces = {n for n in state.reserved_nonces if n >= chain_nonce}

            nonce = chain_nonce
            while nonce in state.reserved_nonces:
                nonce += 1
            state.reserved_nonces.add(nonce)
            return nonce

    async def release(self, address: str, nonce: int) -> None:
        """Release a nonce once its submission has finished, successfully or not."""
        key = address.lower()
        async with self._get_lock(key):
            state = self._states.get(key)
            if state is None:
                return
            state.reserved_nonces.discard(nonce)
            if not state.reserved_nonces:
                del self._states[key]

    def get_state(self, address: str) -> Optional[NonceState]:
        return self._states.get(address.lower())
