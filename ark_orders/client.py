"""
Ark Client - the caller-facing facade.

One client is bound to exactly one network's address registry at
construction. Accounts are supplied per call; the client never stores keys
beyond the optional ``default_account`` built from settings.
"""

import logging
from typing import Any, Iterable, Optional

from ark_common.canon import format_hash, parse_hash
from ark_common.signing import LocalAccount
from ark_orders.config import Settings
from ark_orders.errors import ConfigurationError, SubmissionError
from ark_orders.exchange.approvals import ApprovalCoordinator
from ark_orders.exchange.canceller import OrderCanceller
from ark_orders.exchange.gateway import ContractGateway
from ark_orders.exchange.progress import SubmissionProgress
from ark_orders.exchange.rpc_provider import JsonRpcProvider
from ark_orders.exchange.sequencer import NonceSequencer
from ark_orders.exchange.status import OrderStatusResolver
from ark_orders.exchange.submitter import STEP_BUILD, FulfillInfo, OrderSubmitter
from ark_orders.observability.audit import OrderAuditLog
from ark_orders.protocols.chain_provider import Account, ChainProvider
from ark_orders.registry import AddressRegistry
from ark_orders.schemas.order_intent import (
    DEFAULT_ORDER_TTL_SECONDS, OrderIntentBuilder, OrderStatus, OrderType, SubmittedOrder
)
from ark_orders.util.async_tools import RetryPolicy

logger = logging.getLogger("ark_client")


class ArkClient:
    """Create, fulfill, cancel and track orders on one network."""

    def __init__(
        self,
        provider: ChainProvider,
        registry: AddressRegistry,
        settings: Optional[Settings] = None,
        clock=None,
        audit: Optional[OrderAuditLog] = None,
        default_account: Optional[Account] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.settings = settings
        self.default_account = default_account

        if settings is not None:
            retry_policy = RetryPolicy.from_settings(settings)
            ttl = settings.ARK_ORDER_TTL_SECONDS
            poll_interval = settings.ARK_POLL_INTERVAL_MS / 1000.0
            max_poll_interval = settings.ARK_POLL_MAX_INTERVAL_MS / 1000.0
            self.default_deadline = settings.ARK_INCLUSION_TIMEOUT_MS / 1000.0
        else:
            retry_policy = RetryPolicy()
            ttl = DEFAULT_ORDER_TTL_SECONDS
            poll_interval, max_poll_interval = 0.5, 5.0
            self.default_deadline = 120.0

        self.audit = audit or OrderAuditLog(None)
        self.sequencer = NonceSequencer(provider)
        self.gateway = ContractGateway(provider, registry, self.sequencer)
        self.progress = SubmissionProgress()
        self.builder = OrderIntentBuilder(registry, clock=clock, default_ttl_seconds=ttl)
        self.approvals = ApprovalCoordinator(self.gateway, retry_policy=retry_policy)
        self.resolver = OrderStatusResolver(
            self.gateway, self.progress,
            poll_interval=poll_interval, max_poll_interval=max_poll_interval,
        )
        self.submitter = OrderSubmitter(
            self.gateway, self.approvals, self.builder, self.progress,
            retry_policy=retry_policy, audit=self.audit,
            confirm_status=self.resolver.status,
        )
        self.canceller = OrderCanceller(
            self.gateway, self.resolver, registry,
            retry_policy=retry_policy, audit=self.audit,
        )
        logger.info(f"[client] Bound to {registry.network} (chain id {hex(registry.chain_id)})")

    @classmethod
    def from_settings(cls, settings: Settings, clock=None) -> "ArkClient":
        """Build the httpx provider, registry and (if configured) signer from settings."""
        registry = AddressRegistry.for_network(settings.ARK_NETWORK, settings.ARK_CONTRACT_OVERRIDES)
        provider = JsonRpcProvider(
            settings.ARK_RPC_URL,
            timeout_ms=settings.ARK_RPC_TIMEOUT_MS,
            poll_interval_ms=settings.ARK_POLL_INTERVAL_MS,
            inclusion_timeout_ms=settings.ARK_INCLUSION_TIMEOUT_MS,
        )
        account = None
        if settings.has_signer:
            account = LocalAccount(settings.ARK_ACCOUNT_ADDRESS, settings.ARK_PRIVATE_KEY)
        audit = OrderAuditLog(settings.ARK_AUDIT_LOG_DIR or None)
        logger.info(f"[client] Settings: {settings.redacted()}")
        return cls(provider, registry, settings=settings, clock=clock, audit=audit, default_account=account)

    def _account(self, account: Optional[Account]) -> Account:
        account = account or self.default_account
        if account is None:
            raise ConfigurationError(
                "No account supplied and no signer configured (ARK_ACCOUNT_ADDRESS / ARK_PRIVATE_KEY)"
            )
        return account

    # -----------------------
    # Create
    # -----------------------

    async def create_offer(self, account: Optional[Account] = None, *, broker_id: str, token_address: str,
                           token_id: int, start_amount: int, **fields: Any) -> SubmittedOrder:
        """Bid on one token; approves the currency for the executor first."""
        account = self._account(account)
        return await self.submitter.create(
            account, OrderType.OFFER, offerer=account.address, broker_id=broker_id,
            token_address=token_address, token_id=token_id, start_amount=start_amount, **fields,
        )

    async def create_collection_offer(self, account: Optional[Account] = None, *, broker_id: str,
                                      token_address: str, start_amount: int, **fields: Any) -> SubmittedOrder:
        """Bid on any token of a collection."""
        account = self._account(account)
        return await self.submitter.create(
            account, OrderType.COLLECTION_OFFER, offerer=account.address, broker_id=broker_id,
            token_address=token_address, start_amount=start_amount, **fields,
        )

    async def create_listing(self, account: Optional[Account] = None, *, broker_id: str, token_address: str,
                             token_id: int, start_amount: int, **fields: Any) -> SubmittedOrder:
        """Ask for one token; approves the token for the executor first."""
        account = self._account(account)
        return await self.submitter.create(
            account, OrderType.LISTING, offerer=account.address, broker_id=broker_id,
            token_address=token_address, token_id=token_id, start_amount=start_amount, **fields,
        )

    async def create_auction(self, account: Optional[Account] = None, *, broker_id: str, token_address: str,
                             token_id: int, start_amount: int, end_amount: int, **fields: Any) -> SubmittedOrder:
        account = self._account(account)
        return await self.submitter.create(
            account, OrderType.AUCTION, offerer=account.address, broker_id=broker_id,
            token_address=token_address, token_id=token_id, start_amount=start_amount,
            end_amount=end_amount, **fields,
        )

    # -----------------------
    # Fulfill
    # -----------------------

    async def execute_order(self, account: Optional[Account] = None, *, order_hash, token_address: str,
                            broker_address: str, token_id: Optional[int] = None,
                            related_order_hash=None, currency_address: Optional[str] = None,
                            amount: int = 0) -> str:
        """
        Fulfill an open order and return the fulfilling transaction hash.

        Fulfilling a listing or auction pays ``amount`` of the currency;
        fulfilling an offer hands over ``token_id``.
        """
        account = self._account(account)
        order_hash = parse_hash(order_hash)
        order_type = await self.resolver.order_type(order_hash)
        if order_type is None:
            raise SubmissionError(
                f"Order {format_hash(order_hash)} has no known order type",
                step=STEP_BUILD, operation="execute_order", order_hash=format_hash(order_hash),
                reason="unknown order type",
            )
        info = FulfillInfo(
            order_hash=order_hash,
            related_order_hash=parse_hash(related_order_hash) if related_order_hash is not None else None,
            fulfiller=account.address,
            token_chain_id=self.registry.chain_id,
            token_address=token_address,
            token_id=token_id,
            fulfill_broker_address=broker_address,
        )
        if currency_address is None and not order_type.is_offer:
            currency_address = self.registry.resolve("currency")
        receipt = await self.submitter.fulfill(
            account, info, order_type=order_type, currency_address=currency_address, amount=amount,
        )
        return receipt.transaction_hash

    # -----------------------
    # Cancel
    # -----------------------

    async def cancel_order(self, account: Optional[Account] = None, *, order_hash, token_address: str,
                           token_id: Optional[int] = None) -> str:
        receipt = await self.canceller.cancel(
            self._account(account), parse_hash(order_hash), token_address, token_id,
        )
        return receipt.transaction_hash

    async def cancel_collection_offer(self, account: Optional[Account] = None, *, order_hash,
                                      token_address: str) -> str:
        receipt = await self.canceller.cancel(
            self._account(account), parse_hash(order_hash), token_address, None,
            operation="cancel_collection_offer",
        )
        return receipt.transaction_hash

    # -----------------------
    # Status
    # -----------------------

    async def get_order_status(self, order_hash) -> OrderStatus:
        return await self.resolver.status(parse_hash(order_hash))

    async def wait_for_order_status(self, order_hash, targets: Iterable[OrderStatus] = (OrderStatus.OPEN,),
                                    timeout: Optional[float] = None) -> OrderStatus:
        deadline = self.default_deadline if timeout is None else timeout
        return await self.resolver.await_status(parse_hash(order_hash), targets, deadline)

    async def get_order_type(self, order_hash) -> Optional[OrderType]:
        return await self.resolver.order_type(parse_hash(order_hash))

    async def aclose(self):
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()
