"""
app/api/orders.py

Purpose: Order endpoints

- Order creation and lookup
- Payment verification after Paystack checkout
- Received confirmation, shipping address changes
- Shipping quotes
"""

from fastapi import APIRouter

from app.api.deps import action_response
from app.schemas.order import (
    CreateOrderRequest,
    VerifyPaymentRequest,
    ShippingAddressRequest,
    ShippingQuoteRequest,
)
from app.services import order_service, payment_service, shipping_service

router = APIRouter()


@router.post("/orders")
async def create_order(request: CreateOrderRequest):
    result = await order_service.create_order(
        request.user_id,
        request.shipping_address_id,
        [item.model_dump(exclude_none=True) for item in request.items],
        shipping_price=request.shipping_price,
    )
    return action_response(result)


@router.get("/orders/{order_id}")
async def get_order(order_id: str):
    """Order with its estimated delivery date."""
    return action_response(await order_service.get_order_with_delivery(order_id))


@router.get("/users/{user_id}/orders")
async def get_user_orders(user_id: str):
    return action_response(await order_service.get_orders_by_user(user_id))


@router.post("/orders/{order_id}/verify-payment")
async def verify_payment(order_id: str, request: VerifyPaymentRequest):
    """
    Called by the storefront after Paystack checkout returns.

    Settles the order, decrements stock and credits the referrer.
    """
    return action_response(await payment_service.verify_order_payment(order_id, request.reference))


@router.post("/orders/{order_id}/received")
async def mark_received(order_id: str):
    return action_response(await order_service.mark_order_received(order_id))


@router.put("/orders/{order_id}/shipping-address")
async def update_shipping_address(order_id: str, request: ShippingAddressRequest):
    result = await order_service.update_shipping_address(order_id, request.model_dump())
    return action_response(result)


@router.post("/shipping/quote")
async def quote_shipping(request: ShippingQuoteRequest):
    result = await shipping_service.calculate_shipping(request.state, request.city, request.order_total)
    return action_response(result)
