"""
Order Submitter - approval, broadcast and inclusion for one order.

Steps run strictly in order and each one waits for the previous step's
inclusion, not just its broadcast:

    build -> approve -> broadcast -> inclusion

Contract reverts end the submission immediately. Transient RPC failures and
nonce collisions are retried with bounded backoff: a failed broadcast is
re-broadcast, a failed inclusion wait re-polls the same transaction.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ark_common.canon import canon_addr, format_hash
from ark_orders.errors import (
    ApprovalError, ChainError, IntentValidationError, SubmissionError,
    TransactionRevertedError, TransientChainError, ValidationError
)
from ark_orders.exchange.approvals import ApprovalCoordinator
from ark_orders.exchange.gateway import ContractGateway, PendingTransaction
from ark_orders.exchange.progress import SubmissionProgress
from ark_orders.observability.audit import OrderAuditLog
from ark_orders.protocols.chain_provider import Account, Receipt
from ark_orders.schemas.order_intent import (
    OrderIntent, OrderIntentBuilder, OrderStatus, OrderType, SubmittedOrder
)
from ark_orders.util.async_tools import AsyncRetryError, RetryPolicy, retry_with_policy

logger = logging.getLogger("order_submitter")

EXECUTOR_ROLE = "executor"

STEP_BUILD = "build"
STEP_APPROVE = "approve"
STEP_BROADCAST = "broadcast"
STEP_INCLUSION = "inclusion"


class FulfillInfo(BaseModel):
    """Arguments of the executor's ``fulfill_order``."""

    model_config = ConfigDict(frozen=True)

    order_hash: int
    related_order_hash: Optional[int] = None
    fulfiller: str
    token_chain_id: int
    token_address: str
    token_id: Optional[int] = Field(None, ge=0)
    fulfill_broker_address: str

    def to_calldata(self) -> Dict[str, Any]:
        return {
            "order_hash": self.order_hash,
            "related_order_hash": self.related_order_hash,
            "fulfiller": self.fulfiller,
            "token_chain_id": self.token_chain_id,
            "token_address": self.token_address,
            "token_id": self.token_id,
            "fulfill_broker_address": self.fulfill_broker_address,
        }


class OrderSubmitter:
    """Runs the create and fulfill step sequences."""

    def __init__(
        self,
        gateway: ContractGateway,
        approvals: ApprovalCoordinator,
        builder: OrderIntentBuilder,
        progress: SubmissionProgress,
        retry_policy: Optional[RetryPolicy] = None,
        audit: Optional[OrderAuditLog] = None,
        confirm_status: Optional[Callable[[int], Awaitable[OrderStatus]]] = None,
    ):
        self.gateway = gateway
        self.approvals = approvals
        self.builder = builder
        self.progress = progress
        self.retry_policy = retry_policy or RetryPolicy()
        self.audit = audit or OrderAuditLog(None)
        self.confirm_status = confirm_status

    # -----------------------
    # Create
    # -----------------------

    async def create(self, account: Account, order_type: OrderType, **fields) -> SubmittedOrder:
        """Build the intent from caller fields, then submit it."""
        operation = f"create_{OrderType(order_type).name.lower()}"
        try:
            intent, _ = self.builder.build(order_type, **fields)
        except IntentValidationError as e:
            await self.audit.record("order_failed", operation, account=canon_addr(account.address),
                                    step=STEP_BUILD, error=e.message)
            raise SubmissionError(
                f"Order rejected before submission: {e.message}",
                step=STEP_BUILD, operation=operation, reason=e.message,
                details={"errors": e.errors},
            ) from e
        return await self.submit(account, intent, operation=operation)

    async def submit(self, account: Account, intent: OrderIntent, *, operation: str = "submit") -> SubmittedOrder:
        order_hash = intent.order_hash
        hash_hex = format_hash(order_hash)
        owner = canon_addr(account.address)
        logger.info(f"[submitter] {operation} {hash_hex} by {owner}")
        await self.audit.record("order_submitting", operation, order_hash=hash_hex, account=owner,
                                status=OrderStatus.PENDING_APPROVAL.value,
                                order_type=intent.order_type.value)

        try:
            # approve
            self.progress.mark(order_hash, OrderStatus.PENDING_APPROVAL)
            await self._approve(account, intent, operation, hash_hex)

            # broadcast + inclusion
            self.progress.mark(order_hash, OrderStatus.PENDING_SUBMISSION)
            receipt = await self._send(
                account, "create_order", {"order": intent.to_calldata()},
                operation=operation, hash_hex=hash_hex,
            )
        except SubmissionError as e:
            await self.audit.record("order_failed", operation, order_hash=hash_hex, account=owner,
                                    step=e.step, error=e.reason or e.message)
            raise
        finally:
            self.progress.clear(order_hash)

        status = await self._confirm(order_hash)
        logger.info(f"[submitter] {hash_hex} included in {receipt.transaction_hash}, status {status.value}")
        await self.audit.record("order_created", operation, order_hash=hash_hex, account=owner,
                                status=status.value, transaction_hash=receipt.transaction_hash)
        return SubmittedOrder(order_hash=order_hash, intent=intent, status=status,
                              transaction_hash=receipt.transaction_hash)

    async def _approve(self, account: Account, intent: OrderIntent, operation: str, hash_hex: str):
        if intent.order_type.is_offer:
            approval = self.approvals.ensure_allowance(
                account, EXECUTOR_ROLE, intent.currency_address, intent.required_amount,
                order_hash=hash_hex,
            )
        else:
            approval = self.approvals.ensure_collectible_approval(
                account, EXECUTOR_ROLE, intent.token_address, intent.token_id,
                order_hash=hash_hex,
            )
        await self._approval_step(approval, operation, hash_hex)

    async def _approval_step(self, approval: Awaitable[Any], operation: str, hash_hex: str):
        try:
            return await approval
        except ApprovalError as e:
            raise SubmissionError(
                f"Approval step failed: {e.message}",
                step=STEP_APPROVE, operation=operation, order_hash=hash_hex,
                reason=e.reason or e.message, retryable=bool(e.details.get("retryable")),
            ) from e

    async def _confirm(self, order_hash: int) -> OrderStatus:
        if self.confirm_status is None:
            return OrderStatus.UNKNOWN
        try:
            return await self.confirm_status(order_hash)
        except ChainError as e:
            # the order is on chain; a failed read only means we could not confirm it yet
            logger.warning(f"[submitter] Could not confirm status of {format_hash(order_hash)}: {e}")
            return OrderStatus.UNKNOWN

    # -----------------------
    # Fulfill
    # -----------------------

    async def fulfill(self, account: Account, info: FulfillInfo, *, order_type: OrderType,
                      currency_address: Optional[str] = None, amount: int = 0) -> Receipt:
        """Approve what the fulfiller pays with, then fulfill the order."""
        operation = "execute_order"
        hash_hex = format_hash(info.order_hash)
        owner = canon_addr(account.address)
        logger.info(f"[submitter] {operation} {hash_hex} by {owner}")

        try:
            if order_type.is_offer:
                # fulfilling an offer hands over the token
                approval = self.approvals.ensure_collectible_approval(
                    account, EXECUTOR_ROLE, info.token_address, info.token_id, order_hash=hash_hex,
                )
            else:
                approval = self.approvals.ensure_allowance(
                    account, EXECUTOR_ROLE, currency_address, amount, order_hash=hash_hex,
                )
            await self._approval_step(approval, operation, hash_hex)

            receipt = await self._send(
                account, "fulfill_order", {"fulfill_info": info.to_calldata()},
                operation=operation, hash_hex=hash_hex,
            )
        except SubmissionError as e:
            await self.audit.record("order_failed", operation, order_hash=hash_hex, account=owner,
                                    step=e.step, error=e.reason or e.message)
            raise

        await self.audit.record("order_fulfilled", operation, order_hash=hash_hex, account=owner,
                                transaction_hash=receipt.transaction_hash)
        return receipt

    # -----------------------
    # Shared broadcast + inclusion
    # -----------------------

    async def _send(self, account: Account, method: str, args: Dict[str, Any], *,
                    operation: str, hash_hex: str) -> Receipt:
        pending: PendingTransaction = await self._step(
            STEP_BROADCAST, operation, hash_hex,
            lambda: self.gateway.write(EXECUTOR_ROLE, method, args, account),
        )
        return await self._step(STEP_INCLUSION, operation, hash_hex, pending.wait)

    async def _step(self, step: str, operation: str, hash_hex: str, func):
        try:
            return await retry_with_policy(
                func, self.retry_policy,
                retry_on=(TransientChainError,),
                label=f"{operation}:{step}",
            )
        except TransactionRevertedError as e:
            logger.error(f"[submitter] {operation} {hash_hex} reverted at {step}: {e.reason}")
            raise SubmissionError(
                f"{operation} reverted at {step}: {e.reason}",
                step=step, operation=operation, order_hash=hash_hex, reason=e.reason,
                details={"transaction_hash": e.transaction_hash},
            ) from e
        except AsyncRetryError as e:
            reason = str(e.last_exception) if e.last_exception else str(e)
            logger.error(f"[submitter] {operation} {hash_hex} gave up at {step} after {e.attempts} attempts: {reason}")
            raise SubmissionError(
                f"{operation} failed at {step} after {e.attempts} attempts: {reason}",
                step=step, operation=operation, order_hash=hash_hex, reason=reason,
                retryable=True, details={"attempts": e.attempts},
            ) from e
        except (ChainError, ValidationError) as e:
            raise SubmissionError(
                f"{operation} failed at {step}: {e.message}",
                step=step, operation=operation, order_hash=hash_hex,
                reason=e.details.get("reason") or e.message,
            ) from e
