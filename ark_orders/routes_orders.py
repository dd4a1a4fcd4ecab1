"""
Order Routes - HTTP surface over ArkClient for automation callers.
Writes are signed by the server's configured account.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from ark_orders.client import ArkClient
from ark_orders.schemas.order_intent import OrderStatus, SubmittedOrder

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateOrderRequest(BaseModel):
    broker_id: str
    token_address: str
    start_amount: int = Field(..., ge=0)
    end_amount: Optional[int] = Field(None, ge=0)
    currency_address: Optional[str] = None
    quantity: int = Field(1, ge=1)
    start_date: Optional[int] = None
    end_date: Optional[int] = None
    salt: Optional[int] = None
    additional_data: List[int] = []


class TokenOrderRequest(CreateOrderRequest):
    token_id: int = Field(..., ge=0)


class AuctionRequest(TokenOrderRequest):
    end_amount: int = Field(..., ge=0)


class FulfillRequest(BaseModel):
    order_hash: str
    token_address: str
    broker_address: str
    token_id: Optional[int] = Field(None, ge=0)
    related_order_hash: Optional[str] = None
    currency_address: Optional[str] = None
    amount: int = Field(0, ge=0)


class CancelRequest(BaseModel):
    order_hash: str
    token_address: str
    token_id: Optional[int] = Field(None, ge=0)


class CancelCollectionOfferRequest(BaseModel):
    order_hash: str
    token_address: str


def _client(request: Request) -> ArkClient:
    return request.app.state.ark_client


def _submitted(order: SubmittedOrder) -> dict:
    return {
        "order_hash": order.order_hash_hex,
        "order_type": order.intent.order_type.value,
        "status": order.status.value,
        "transaction_hash": order.transaction_hash,
        "offerer": order.intent.offerer,
        "salt": str(order.intent.salt),
    }


@router.post("/offers")
async def create_offer(body: TokenOrderRequest, request: Request):
    order = await _client(request).create_offer(**body.model_dump(exclude_none=True))
    return _submitted(order)


@router.post("/collection-offers")
async def create_collection_offer(body: CreateOrderRequest, request: Request):
    order = await _client(request).create_collection_offer(**body.model_dump(exclude_none=True))
    return _submitted(order)


@router.post("/listings")
async def create_listing(body: TokenOrderRequest, request: Request):
    order = await _client(request).create_listing(**body.model_dump(exclude_none=True))
    return _submitted(order)


@router.post("/auctions")
async def create_auction(body: AuctionRequest, request: Request):
    order = await _client(request).create_auction(**body.model_dump(exclude_none=True))
    return _submitted(order)


@router.post("/fulfill")
async def fulfill_order(body: FulfillRequest, request: Request):
    tx = await _client(request).execute_order(
        order_hash=body.order_hash, token_address=body.token_address,
        broker_address=body.broker_address, token_id=body.token_id,
        related_order_hash=body.related_order_hash,
        currency_address=body.currency_address, amount=body.amount,
    )
    return {"order_hash": body.order_hash, "transaction_hash": tx}


@router.post("/cancel")
async def cancel_order(body: CancelRequest, request: Request):
    tx = await _client(request).cancel_order(
        order_hash=body.order_hash, token_address=body.token_address, token_id=body.token_id,
    )
    return {"order_hash": body.order_hash, "transaction_hash": tx}


@router.post("/cancel-collection-offer")
async def cancel_collection_offer(body: CancelCollectionOfferRequest, request: Request):
    tx = await _client(request).cancel_collection_offer(
        order_hash=body.order_hash, token_address=body.token_address,
    )
    return {"order_hash": body.order_hash, "transaction_hash": tx}


@router.get("/audit")
async def recent_audit_events(request: Request, lines: int = Query(50, ge=1, le=1000)):
    """Most recent lifecycle events from today's audit file."""
    audit = _client(request).audit
    return {"enabled": audit.enabled, "events": audit.tail(lines)}


@router.get("/{order_hash}/status")
async def order_status(order_hash: str, request: Request, wait_for: Optional[OrderStatus] = None,
                       timeout: Optional[float] = None):
    """Current status; with ``wait_for``, poll until that status or a terminal one."""
    client = _client(request)
    if wait_for is not None:
        status = await client.wait_for_order_status(order_hash, (wait_for,), timeout=timeout)
    else:
        status = await client.get_order_status(order_hash)
    return {"order_hash": order_hash, "status": status.value, "terminal": status.is_terminal}


@router.get("/{order_hash}/type")
async def order_type(order_hash: str, request: Request):
    kind = await _client(request).get_order_type(order_hash)
    return {"order_hash": order_hash, "order_type": kind.value if kind else None}
