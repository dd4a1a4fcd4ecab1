"""
Approval Coordinator - make sure a spender may move an account's asset
before an order that depends on it is broadcast.

Allowances are re-read on every call; a grant seen earlier may be stale.
Calls for the same (owner, asset, spender) are serialized so a second caller
observes the first one's approval instead of racing a duplicate.
Transient RPC failures are retried with bounded backoff; reverts and an
insufficient balance end the approval at once.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from ark_common.canon import canon_addr, same_address
from ark_orders.errors import ApprovalError, ChainError, TransientChainError, ValidationError
from ark_orders.exchange.gateway import ContractGateway, PendingTransaction
from ark_orders.protocols.chain_provider import Account
from ark_orders.util.async_tools import AsyncRetryError, RetryPolicy, retry_with_policy

logger = logging.getLogger("approvals")

T = TypeVar("T")


class AssetKind(str, Enum):
    CURRENCY = "currency"
    COLLECTIBLE = "collectible"


@dataclass(frozen=True)
class ApprovalGrant:
    """Standing permission observed (or created) for one spender."""
    kind: AssetKind
    owner: str
    spender: str
    asset_address: str
    amount: Optional[int] = None
    token_id: Optional[int] = None
    transaction_hash: Optional[str] = None

    @property
    def issued(self) -> bool:
        """True when this call had to send an approval transaction."""
        return self.transaction_hash is not None


class ApprovalCoordinator:
    """Ensures allowances ahead of order submission."""

    def __init__(self, gateway: ContractGateway, retry_policy: Optional[RetryPolicy] = None):
        self.gateway = gateway
        self.retry_policy = retry_policy or RetryPolicy()
        self._locks: Dict[Tuple[str, str, str], asyncio.Lock] = {}

    def _lock_for(self, owner: str, asset: str, spender: str) -> asyncio.Lock:
        key = (owner, asset, spender)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _with_retry(self, label: str, func: Callable[[], Awaitable[T]]) -> T:
        return await retry_with_policy(func, self.retry_policy, retry_on=(TransientChainError,),
                                       label=f"approvals:{label}")

    async def _approve(self, asset: str, args: Dict[str, Any], account: Account) -> PendingTransaction:
        """Broadcast ``approve`` and wait for it; a failed wait re-polls the same transaction."""
        pending = await self._with_retry("approve", lambda: self.gateway.write(asset, "approve", args, account))
        await self._with_retry("approve:inclusion", pending.wait)
        return pending

    @staticmethod
    def _failure(e: Exception, prefix: str, operation: str, order_hash: Optional[str],
                 details: Dict[str, Any]) -> ApprovalError:
        if isinstance(e, AsyncRetryError):
            reason = str(e.last_exception) if e.last_exception else str(e)
            return ApprovalError(f"{prefix} gave up after {e.attempts} attempts: {reason}",
                                 operation=operation, order_hash=order_hash, reason=reason,
                                 retryable=True, details={**details, "attempts": e.attempts})
        reason = e.details.get("reason") or e.message
        return ApprovalError(f"{prefix} failed: {e.message}", operation=operation,
                             order_hash=order_hash, reason=reason, details=details)

    async def ensure_allowance(self, account: Account, spender_role: str, currency_address: str,
                               required_amount: int, *, order_hash: Optional[str] = None) -> ApprovalGrant:
        """Approve exactly ``required_amount`` unless the current allowance covers it."""
        if required_amount < 0:
            raise ApprovalError("Required amount must be non-negative", operation="ensure_allowance",
                                order_hash=order_hash, reason="negative amount")
        owner = canon_addr(account.address)
        currency = canon_addr(currency_address)
        spender = self.gateway.resolve_target(spender_role)
        context = {"currency": currency, "spender": spender, "required": required_amount}

        async with self._lock_for(owner, currency, spender):
            try:
                current = await self._with_retry("allowance", lambda: self.gateway.read(
                    currency, "allowance", {"owner": owner, "spender": spender}))
                if current >= required_amount:
                    logger.info(f"[approvals] {owner}: allowance {current} >= {required_amount} on {currency}, nothing to do")
                    return ApprovalGrant(AssetKind.CURRENCY, owner, spender, currency, amount=current)

                balance = await self._with_retry("balance_of", lambda: self.gateway.read(
                    currency, "balance_of", {"account": owner}))
                if balance < required_amount:
                    raise ApprovalError(
                        f"Insufficient balance: {balance} < {required_amount}",
                        operation="ensure_allowance", order_hash=order_hash,
                        reason="insufficient balance",
                        details={"balance": balance, "required": required_amount, "currency": currency},
                    )

                logger.info(f"[approvals] {owner}: approving {required_amount} of {currency} for {spender} (current {current})")
                pending = await self._approve(currency, {"spender": spender, "amount": required_amount}, account)
            except (AsyncRetryError, ChainError, ValidationError) as e:
                raise self._failure(e, "Currency approval", "ensure_allowance", order_hash, context) from e

        logger.info(f"[approvals] {owner}: approval of {required_amount} included ({pending.transaction_hash})")
        return ApprovalGrant(AssetKind.CURRENCY, owner, spender, currency,
                             amount=required_amount, transaction_hash=pending.transaction_hash)

    async def ensure_collectible_approval(self, account: Account, spender_role: str, token_address: str,
                                          token_id: int, *, order_hash: Optional[str] = None) -> ApprovalGrant:
        """Approve the spender for one token unless it is already approved."""
        owner = canon_addr(account.address)
        token = canon_addr(token_address)
        spender = self.gateway.resolve_target(spender_role)
        context = {"token_address": token, "token_id": token_id, "spender": spender}

        async with self._lock_for(owner, token, spender):
            try:
                approved = await self._with_retry("get_approved", lambda: self.gateway.read(
                    token, "get_approved", {"token_id": token_id}))
                if same_address(hex(approved), spender):
                    return ApprovalGrant(AssetKind.COLLECTIBLE, owner, spender, token, token_id=token_id)
                for_all = await self._with_retry("is_approved_for_all", lambda: self.gateway.read(
                    token, "is_approved_for_all", {"owner": owner, "operator": spender}))
                if for_all:
                    return ApprovalGrant(AssetKind.COLLECTIBLE, owner, spender, token, token_id=token_id)

                logger.info(f"[approvals] {owner}: approving token {token_id} of {token} for {spender}")
                pending = await self._approve(token, {"to": spender, "token_id": token_id}, account)
            except (AsyncRetryError, ChainError, ValidationError) as e:
                raise self._failure(e, "Collectible approval", "ensure_collectible_approval",
                                    order_hash, context) from e

        return ApprovalGrant(AssetKind.COLLECTIBLE, owner, spender, token,
                             token_id=token_id, transaction_hash=pending.transaction_hash)
