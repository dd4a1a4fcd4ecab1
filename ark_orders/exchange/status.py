"""
Order Status Resolver - chain-side order state mapped to client statuses.

The order book reports ``Option<OrderStatus>``: a tagged variant with exactly
one active tag, or None when it has never seen the hash. Every tag the client
knows is listed in CHAIN_STATUS_MAP; anything else becomes UNKNOWN so new
chain-side states never break callers.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Iterable, Optional

from ark_common.canon import format_hash
from ark_common.felt import EnumVariant
from ark_orders.errors import StatusTimeoutError, TransientChainError
from ark_orders.exchange.gateway import ContractGateway
from ark_orders.exchange.progress import SubmissionProgress
from ark_orders.schemas.order_intent import OrderStatus, OrderType

logger = logging.getLogger("order_status")

ORDERBOOK_ROLE = "orderbook"

CHAIN_STATUS_MAP = MappingProxyType({
    "Open": OrderStatus.OPEN,
    "FulfillPending": OrderStatus.OPEN,
    "Fulfilled": OrderStatus.EXECUTED,
    "Executed": OrderStatus.EXECUTED,
    "CancelledUser": OrderStatus.CANCELLED,
    "CancelledByNewOrder": OrderStatus.CANCELLED,
    "CancelledAssetFault": OrderStatus.CANCELLED,
    "CancelledOwnership": OrderStatus.CANCELLED,
    "Expired": OrderStatus.EXPIRED,
})


def map_chain_status(tag: Optional[str]) -> OrderStatus:
    """Translate one chain tag; unrecognized or missing tags are UNKNOWN."""
    status = CHAIN_STATUS_MAP.get(tag) if tag is not None else None
    if status is None:
        logger.warning(f"[status] Unrecognized chain status tag {tag!r}, treating as Unknown")
        return OrderStatus.UNKNOWN
    return status


class OrderStatusResolver:
    """Single reads and deadline-bounded polling of order status."""

    def __init__(
        self,
        gateway: ContractGateway,
        progress: Optional[SubmissionProgress] = None,
        poll_interval: float = 0.5,
        max_poll_interval: float = 5.0,
        backoff_factor: float = 1.5,
    ):
        self.gateway = gateway
        self.progress = progress or SubmissionProgress()
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.backoff_factor = backoff_factor

    async def lookup(self, order_hash: int) -> Optional[OrderStatus]:
        """Chain status only; None when the order book has no record of the hash."""
        result = await self.gateway.read(ORDERBOOK_ROLE, "get_order_status", {"order_hash": order_hash})
        if result is None:
            return None
        if isinstance(result, EnumVariant):
            return map_chain_status(result.name)
        return map_chain_status(str(result))

    async def status(self, order_hash: int) -> OrderStatus:
        """Chain status, falling back to the local submission phase, then UNKNOWN."""
        chain_status = await self.lookup(order_hash)
        if chain_status is not None:
            return chain_status
        return self.progress.phase(order_hash) or OrderStatus.UNKNOWN

    async def order_type(self, order_hash: int) -> Optional[OrderType]:
        result = await self.gateway.read(ORDERBOOK_ROLE, "get_order_type", {"order_hash": order_hash})
        name = result.name if isinstance(result, EnumVariant) else result
        try:
            return OrderType(name)
        except ValueError:
            logger.warning(f"[status] Unrecognized order type {name!r} for {format_hash(order_hash)}")
            return None

    async def await_status(self, order_hash: int, target_statuses: Iterable[OrderStatus],
                           deadline: float) -> OrderStatus:
        """
        Poll until the status is one of ``target_statuses`` or terminal.

        Args:
            order_hash: Order to watch
            target_statuses: Statuses that end the wait
            deadline: Seconds to wait before giving up

        Raises:
            StatusTimeoutError: deadline passed; chain state is left untouched
        """
        targets = frozenset(OrderStatus(s) for s in target_statuses)
        last = {"status": None}

        async def poll() -> OrderStatus:
            delay = self.poll_interval
            while True:
                try:
                    current = await self.status(order_hash)
                except TransientChainError as e:
                    logger.warning(f"[status] Read of {format_hash(order_hash)} failed, polling again: {e}")
                else:
                    last["status"] = current
                    if current in targets or current.is_terminal:
                        return current
                await asyncio.sleep(delay)
                delay = min(delay * self.backoff_factor, self.max_poll_interval)

        try:
            return await asyncio.wait_for(poll(), timeout=deadline)
        except asyncio.TimeoutError:
            last_status = last["status"].value if last["status"] else None
            logger.info(f"[status] Gave up waiting for {format_hash(order_hash)} after {deadline}s (last: {last_status})")
            raise StatusTimeoutError(
                f"Order {format_hash(order_hash)} did not reach {sorted(s.value for s in targets)} within {deadline}s",
                order_hash=format_hash(order_hash),
                last_status=last_status,
            ) from None
