"""
Order Canceller - cancel a submitted order by hash.

The local status check only saves a doomed transaction; ownership and broker
permissions are enforced by the executor contract, and its revert reason is
what the caller sees when the chain disagrees.
"""

import logging
from typing import Optional

from ark_common.canon import canon_addr, format_hash
from ark_orders.errors import (
    CancellationError, ChainError, TransactionRevertedError, TransientChainError, ValidationError
)
from ark_orders.exchange.gateway import ContractGateway, PendingTransaction
from ark_orders.exchange.status import OrderStatusResolver
from ark_orders.observability.audit import OrderAuditLog
from ark_orders.protocols.chain_provider import Account, Receipt
from ark_orders.registry import AddressRegistry
from ark_orders.util.async_tools import AsyncRetryError, RetryPolicy, retry_with_policy

logger = logging.getLogger("order_canceller")

EXECUTOR_ROLE = "executor"


class OrderCanceller:
    def __init__(
        self,
        gateway: ContractGateway,
        resolver: OrderStatusResolver,
        registry: AddressRegistry,
        retry_policy: Optional[RetryPolicy] = None,
        audit: Optional[OrderAuditLog] = None,
    ):
        self.gateway = gateway
        self.resolver = resolver
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()
        self.audit = audit or OrderAuditLog(None)

    async def cancel(self, account: Account, order_hash: int, token_address: str,
                     token_id: Optional[int] = None, *, operation: str = "cancel_order") -> Receipt:
        """
        Cancel ``order_hash`` on behalf of ``account``.

        Raises:
            CancellationError: unknown order, already finalized, or the
                executor reverted (unauthorized canceller, wrong token)
        """
        hash_hex = format_hash(order_hash)
        canceller = canon_addr(account.address)

        current = await self.resolver.lookup(order_hash)
        if current is None and self.resolver.progress.phase(order_hash) is None:
            await self._reject(operation, hash_hex, canceller, "order not found")
        elif current is not None and current.is_terminal:
            await self._reject(operation, hash_hex, canceller, f"order already finalized ({current.value})")

        cancel_info = {
            "order_hash": order_hash,
            "canceller": canceller,
            "token_chain_id": self.registry.chain_id,
            "token_address": canon_addr(token_address),
            "token_id": token_id,
        }
        logger.info(f"[canceller] {operation} {hash_hex} by {canceller}")

        try:
            pending: PendingTransaction = await retry_with_policy(
                lambda: self.gateway.write(EXECUTOR_ROLE, "cancel_order", {"cancel_info": cancel_info}, account),
                self.retry_policy, retry_on=(TransientChainError,), label=f"{operation}:broadcast",
            )
            receipt = await retry_with_policy(
                pending.wait, self.retry_policy,
                retry_on=(TransientChainError,), label=f"{operation}:inclusion",
            )
        except TransactionRevertedError as e:
            await self._reject(operation, hash_hex, canceller, e.reason, cause=e)
        except AsyncRetryError as e:
            reason = str(e.last_exception) if e.last_exception else str(e)
            await self._reject(operation, hash_hex, canceller, reason, cause=e)
        except (ChainError, ValidationError) as e:
            await self._reject(operation, hash_hex, canceller, e.details.get("reason") or e.message, cause=e)

        await self.audit.record("order_cancelled", operation, order_hash=hash_hex, account=canceller,
                                transaction_hash=receipt.transaction_hash)
        return receipt

    async def _reject(self, operation: str, hash_hex: str, canceller: str, reason: str,
                      cause: Optional[BaseException] = None):
        logger.error(f"[canceller] {operation} {hash_hex} rejected: {reason}")
        await self.audit.record("order_failed", operation, order_hash=hash_hex, account=canceller, error=reason)
        raise CancellationError(
            f"Cannot cancel {hash_hex}: {reason}",
            operation=operation, order_hash=hash_hex, reason=reason,
        ) from cause
