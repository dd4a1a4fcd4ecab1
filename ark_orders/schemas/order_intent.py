"""
Order Intent Schema - Pydantic models for orders and the intent builder.
Defines order structure, client-side statuses, validation and hashing.
"""

import logging
import secrets
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from ark_common.canon import canon_addr, compute_order_hash, format_hash
from ark_common.felt import EnumVariant
from ark_orders.errors import IntentValidationError
from ark_orders.registry import AddressRegistry

logger = logging.getLogger("order_intent")

DEFAULT_ORDER_TTL_SECONDS = 60 * 60 * 24 * 30


class OrderType(str, Enum):
    """Order kinds as the order book names them."""
    LISTING = "Listing"
    AUCTION = "Auction"
    OFFER = "Offer"
    COLLECTION_OFFER = "CollectionOffer"

    @property
    def is_offer(self) -> bool:
        return self in (OrderType.OFFER, OrderType.COLLECTION_OFFER)

    @property
    def requires_token_id(self) -> bool:
        return self is not OrderType.COLLECTION_OFFER


class RouteType(str, Enum):
    """Asset flow of an order: what the offerer gives for what."""
    ERC20_TO_ERC721 = "Erc20ToErc721"
    ERC721_TO_ERC20 = "Erc721ToErc20"


ROUTE_INDEX = {RouteType.ERC20_TO_ERC721: 0, RouteType.ERC721_TO_ERC20: 1}


class OrderStatus(str, Enum):
    """Client-side order status."""
    PENDING_APPROVAL = "PendingApproval"
    PENDING_SUBMISSION = "PendingSubmission"
    OPEN = "Open"
    EXECUTED = "Executed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.EXECUTED, OrderStatus.CANCELLED, OrderStatus.EXPIRED})


class OrderIntent(BaseModel):
    """Canonical order representation. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    order_type: OrderType
    route: RouteType
    offerer: str
    broker_id: str
    token_address: str
    token_id: Optional[int] = Field(None, ge=0)
    quantity: int = Field(1, ge=1)
    start_amount: int = Field(..., ge=0)
    end_amount: Optional[int] = Field(None, ge=0)
    currency_address: str
    currency_chain_id: int
    token_chain_id: int
    start_date: int = Field(..., ge=0)
    end_date: int = Field(..., ge=0)
    salt: int = Field(..., ge=0)
    additional_data: Tuple[int, ...] = ()

    def canonical_fields(self) -> Dict[str, Any]:
        """Fields in the form the canonical encoding expects."""
        return {
            "route": ROUTE_INDEX[self.route],
            "offerer": self.offerer,
            "broker_id": self.broker_id,
            "token_chain_id": self.token_chain_id,
            "token_address": self.token_address,
            "token_id": self.token_id,
            "quantity": self.quantity,
            "start_amount": self.start_amount,
            "end_amount": self.end_amount or 0,
            "currency_chain_id": self.currency_chain_id,
            "currency_address": self.currency_address,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "salt": self.salt,
            "additional_data": list(self.additional_data),
        }

    @property
    def order_hash(self) -> int:
        return compute_order_hash(self.canonical_fields())

    @property
    def required_amount(self) -> int:
        """Currency amount an offerer must have approved."""
        return max(self.start_amount, self.end_amount or 0)

    def semantic_key(self) -> Tuple:
        """Everything except the salt; equal keys mean the same order."""
        fields = self.canonical_fields()
        fields.pop("salt")
        fields["additional_data"] = tuple(fields["additional_data"])
        return tuple(sorted(fields.items()))

    def to_calldata(self) -> Dict[str, Any]:
        """Order struct arguments for the executor's ``create_order``."""
        return {
            "route": EnumVariant(self.route.value, ROUTE_INDEX[self.route]),
            "currency_address": self.currency_address,
            "currency_chain_id": self.currency_chain_id,
            "salt": self.salt,
            "offerer": self.offerer,
            "token_chain_id": self.token_chain_id,
            "token_address": self.token_address,
            "token_id": self.token_id,
            "quantity": self.quantity,
            "start_amount": self.start_amount,
            "end_amount": self.end_amount or 0,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "broker_id": self.broker_id,
            "additional_data": list(self.additional_data),
        }


class SubmittedOrder(BaseModel):
    """What a caller gets back from a successful submission."""

    model_config = ConfigDict(frozen=True)

    order_hash: int
    intent: OrderIntent
    status: OrderStatus
    transaction_hash: Optional[str] = None

    @property
    def order_hash_hex(self) -> str:
        return format_hash(self.order_hash)


def route_for(order_type: OrderType) -> RouteType:
    return RouteType.ERC20_TO_ERC721 if order_type.is_offer else RouteType.ERC721_TO_ERC20


def _pydantic_messages(error: PydanticValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{loc}: {item.get('msg')}" if loc else item.get("msg", "invalid"))
    return messages


class OrderIntentBuilder:
    """Validates caller fields and produces (OrderIntent, order hash)."""

    def __init__(self, registry: AddressRegistry, clock: Optional[Callable[[], float]] = None,
                 default_ttl_seconds: int = DEFAULT_ORDER_TTL_SECONDS):
        self.registry = registry
        self.clock = clock or time.time
        self.default_ttl_seconds = default_ttl_seconds

    def build(
        self,
        order_type: OrderType,
        *,
        offerer: str,
        broker_id: str,
        token_address: str,
        start_amount: int,
        token_id: Optional[int] = None,
        end_amount: Optional[int] = None,
        currency_address: Optional[str] = None,
        quantity: int = 1,
        start_date: Optional[int] = None,
        end_date: Optional[int] = None,
        salt: Optional[int] = None,
        additional_data: Optional[List[int]] = None,
    ) -> Tuple[OrderIntent, int]:
        order_type = OrderType(order_type)
        now = int(self.clock())
        # resolve defaults before validating
        start = now if start_date is None else int(start_date)
        end = start + self.default_ttl_seconds if end_date is None else int(end_date)
        errors = validate_order_fields(
            order_type,
            token_id=token_id,
            start_amount=start_amount,
            end_amount=end_amount,
            start_date=start,
            end_date=end,
            now=now,
        )
        if errors:
            raise IntentValidationError(errors, {"operation": "build", "order_type": order_type.value})

        try:
            intent = OrderIntent(
                order_type=order_type,
                route=route_for(order_type),
                offerer=canon_addr(offerer),
                broker_id=canon_addr(broker_id),
                token_address=canon_addr(token_address),
                token_id=token_id,
                quantity=quantity,
                start_amount=start_amount,
                end_amount=end_amount,
                currency_address=canon_addr(currency_address or self.registry.resolve("currency")),
                currency_chain_id=self.registry.chain_id,
                token_chain_id=self.registry.chain_id,
                start_date=start,
                end_date=end,
                salt=secrets.randbits(128) if salt is None else int(salt),
                additional_data=tuple(additional_data or ()),
            )
        except PydanticValidationError as e:
            raise IntentValidationError(_pydantic_messages(e), {"operation": "build"}) from e
        except ValueError as e:
            raise IntentValidationError([str(e)], {"operation": "build"}) from e

        order_hash = intent.order_hash
        logger.info(f"[order_intent] Built {order_type.value} {format_hash(order_hash)} for {intent.token_address}")
        return intent, order_hash


def validate_order_fields(
    order_type: OrderType,
    *,
    token_id: Optional[int],
    start_amount: int,
    end_amount: Optional[int],
    start_date: Optional[int],
    end_date: Optional[int],
    now: int,
) -> List[str]:
    """Business rules for an order, as a list of error messages (empty if valid)."""
    errors = []

    if start_amount is None or start_amount < 0:
        errors.append("start_amount must be non-negative")
    if end_amount is not None:
        if end_amount < 0:
            errors.append("end_amount must be non-negative")
        elif start_amount is not None and start_amount > end_amount:
            errors.append("start_amount must not exceed end_amount")
    if order_type is OrderType.AUCTION and not end_amount:
        errors.append("end_amount is required for auctions and must be positive")
    if order_type is OrderType.LISTING and end_amount is not None:
        errors.append("end_amount is only valid for auctions and offers; use an auction for a price range")

    if order_type.requires_token_id and token_id is None:
        errors.append(f"token_id is required for {order_type.value} orders")
    if not order_type.requires_token_id and token_id is not None:
        errors.append("token_id must be absent for collection offers")
    if token_id is not None and token_id < 0:
        errors.append("token_id must be non-negative")

    if end_date is not None:
        if end_date <= now:
            errors.append(f"end_date {end_date} is not in the future (now={now})")
        if start_date is not None and start_date > end_date:
            errors.append("start_date must not be after end_date")

    return errors
