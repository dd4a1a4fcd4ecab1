"""
Per-account nonce sequencer.

Every broadcast for an account goes through that account's lock, so two
transactions can never claim the same account nonce. The next nonce is
tracked locally after the first chain read and resynced after a collision.
Different accounts never wait on each other.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict

from ark_common.canon import canon_addr
from ark_orders.errors import NonceCollisionError
from ark_orders.protocols.chain_provider import Account, ChainProvider

logger = logging.getLogger(__name__)


class NonceSequencer:
    """Single-writer broadcast queue per account."""

    def __init__(self, provider: ChainProvider):
        self._provider = provider
        self._locks: Dict[str, asyncio.Lock] = {}
        self._next_nonce: Dict[str, int] = {}

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        return lock

    async def broadcast(self, account: Account, send: Callable[[int], Awaitable[str]]) -> str:
        """Run ``send(nonce)`` with exclusive use of the account's next nonce."""
        address = canon_addr(account.address)
        async with self._lock_for(address):
            nonce = self._next_nonce.get(address)
            if nonce is None:
                nonce = await self._provider.get_nonce(address)
            try:
                transaction_hash = await send(nonce)
            except NonceCollisionError:
                self._next_nonce.pop(address, None)
                logger.warning(f"[sequencer] {address}: nonce {nonce} rejected, resyncing from chain")
                raise
            except Exception:
                # the node may or may not have consumed the nonce
                self._next_nonce.pop(address, None)
                raise
            self._next_nonce[address] = nonce + 1
            return transaction_hash

    def peek(self, address: str):
        return self._next_nonce.get(canon_addr(address))
