"""
Order Canceller Tests
"""

import pytest

from ark_orders.errors import CancellationError, TransientChainError
from ark_orders.schemas.order_intent import OrderStatus


@pytest.fixture
async def open_offer(client, chain, offerer, broker):
    chain.mint_currency(offerer.address, 1000)
    return await client.create_offer(offerer, broker_id=broker, token_address=chain.collectible,
                                     token_id=1, start_amount=100)


@pytest.mark.asyncio
class TestCancelOrder:

    async def test_cancel_open_order(self, client, chain, offerer, open_offer):
        tx = await client.cancel_order(offerer, order_hash=open_offer.order_hash_hex,
                                       token_address=chain.collectible, token_id=1)

        assert tx == chain.broadcasts("cancel_order")[0][2]
        assert await client.get_order_status(open_offer.order_hash) is OrderStatus.CANCELLED

    async def test_scenario_c_never_submitted(self, client, chain, offerer):
        with pytest.raises(CancellationError) as exc_info:
            await client.cancel_order(offerer, order_hash=0xdead, token_address=chain.collectible, token_id=1)

        assert exc_info.value.reason == "order not found"
        assert chain.broadcasts() == []

    async def test_already_finalized(self, client, chain, offerer, open_offer):
        chain.set_status(open_offer.order_hash, "Fulfilled")
        before = len(chain.broadcasts())

        with pytest.raises(CancellationError, match="already finalized"):
            await client.cancel_order(offerer, order_hash=open_offer.order_hash,
                                      token_address=chain.collectible, token_id=1)

        assert len(chain.broadcasts()) == before

    async def test_chain_rejects_other_canceller(self, client, chain, fulfiller, open_offer):
        with pytest.raises(CancellationError) as exc_info:
            await client.cancel_order(fulfiller, order_hash=open_offer.order_hash,
                                      token_address=chain.collectible, token_id=1)

        assert exc_info.value.reason == "Caller is not the offerer"
        assert exc_info.value.details["retryable"] is False
        assert await client.get_order_status(open_offer.order_hash) is OrderStatus.OPEN

    async def test_in_flight_order_goes_to_chain(self, client, chain, offerer):
        client.progress.mark(0xbeef, OrderStatus.PENDING_SUBMISSION)

        with pytest.raises(CancellationError) as exc_info:
            await client.cancel_order(offerer, order_hash=0xbeef, token_address=chain.collectible, token_id=1)

        assert exc_info.value.reason == "Order not found"
        assert len(chain.broadcasts("cancel_order")) == 1

    async def test_unencodable_token_id_is_cancellation_error(self, client, chain, offerer, open_offer):
        with pytest.raises(CancellationError) as exc_info:
            await client.cancel_order(offerer, order_hash=open_offer.order_hash,
                                      token_address=chain.collectible, token_id=-1)

        assert exc_info.value.order_hash == open_offer.order_hash_hex
        assert chain.broadcasts("cancel_order") == []

    async def test_transient_broadcast_failure_is_retried(self, client, chain, offerer, open_offer):
        chain.fail_invoke("cancel_order", TransientChainError("node busy"))

        await client.cancel_order(offerer, order_hash=open_offer.order_hash,
                                  token_address=chain.collectible, token_id=1)

        assert len(chain.broadcasts("cancel_order")) == 1
        assert await client.get_order_status(open_offer.order_hash) is OrderStatus.CANCELLED


@pytest.mark.asyncio
class TestCancelCollectionOffer:

    async def test_cancel_collection_offer(self, client, chain, offerer, broker):
        chain.mint_currency(offerer.address, 1000)
        order = await client.create_collection_offer(offerer, broker_id=broker,
                                                     token_address=chain.collectible, start_amount=10)

        await client.cancel_collection_offer(offerer, order_hash=order.order_hash,
                                             token_address=chain.collectible)

        assert await client.get_order_status(order.order_hash) is OrderStatus.CANCELLED
        _, method, _, sender = chain.broadcasts("cancel_order")[0]
        assert sender == offerer.address
