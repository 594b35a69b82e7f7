"""
Checkout: turn selected cart lines into an order.

Reservation, order insert and cart cleanup run in one store transaction, so
a failure on any line leaves inventory, orders and the cart untouched. A
transaction aborted by a concurrent write is retried from the start.
"""
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

import inventory
from errors import NotFoundError, ValidationError
from inventory import LineItem
from orders import next_order_number
from schemas import (
    AddressSnapshot,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    order_total,
    same_id,
)
from store import Store, run_in_transaction

logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    address_id: str
    cart_item_ids: List[str] = Field(default_factory=list)
    shipping_charge: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    notes: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.COD
    use_billing_address: bool = False
    billing_address_id: Optional[str] = None


def place_order(store: Store, user_id: str, request: CheckoutRequest) -> Order:
    if not request.address_id:
        raise ValidationError("Shipping address ID is required", field="address_id")
    requested = list(dict.fromkeys(request.cart_item_ids))
    if not requested:
        raise ValidationError("Please select at least one item to purchase", field="cart_item_ids")

    order = run_in_transaction(store, _place, user_id, request, requested)
    logger.info(f"Order {order.order_number} placed by user {user_id}: {len(order.items)} items, total {order.total_amount}")
    return order


def _place(tx: Store, user_id: str, request: CheckoutRequest, requested: List[str]) -> Order:
    cart = tx.get_cart(user_id)
    if cart is None or not cart.items:
        raise ValidationError("Cart is empty")
    selected = [cart.find_item(item_id) for item_id in requested]
    missing = [item_id for item_id, item in zip(requested, selected) if item is None]
    if missing:
        raise NotFoundError(f"Some items not found in cart: {', '.join(missing)}", items=missing)

    shipping = tx.get_address(user_id, request.address_id)
    if shipping is None:
        raise NotFoundError("Shipping address not found")
    billing = None
    if (request.use_billing_address and request.billing_address_id
            and not same_id(request.billing_address_id, request.address_id)):
        billing_doc = tx.get_address(user_id, request.billing_address_id)
        if billing_doc is not None:
            billing = AddressSnapshot.of(billing_doc)

    subtotal = round(sum(item.price * item.quantity for item in selected), 2)
    total = order_total(subtotal, request.shipping_charge, request.tax, request.discount)
    if total < 0:
        raise ValidationError("Discount cannot exceed the order amount", field="discount")

    reservation = inventory.reserve(tx, [
        LineItem(product_id=item.product_id, variant_id=item.variant_id, size_id=item.size_id,
                 quantity=item.quantity, name=item.name, ref=item.id)
        for item in selected
    ])
    order_items = [
        OrderItem(
            product_id=item.product_id,
            product_name=item.name or reserved.selection.product.name,
            variant_id=item.variant_id,
            size_id=item.size_id,
            color=item.color,
            size=item.size,
            quantity=item.quantity,
            unit_price=item.price,
            total_price=round(item.price * item.quantity, 2),
            image=item.image or reserved.selection.image,
        )
        for item, reserved in zip(selected, reservation.lines)
    ]

    order = tx.insert_order(Order(
        order_number=next_order_number(tx),
        user_id=user_id,
        items=order_items,
        shipping_address=AddressSnapshot.of(shipping),
        billing_address=billing,
        subtotal=subtotal,
        shipping_charge=request.shipping_charge,
        discount=request.discount,
        tax=request.tax,
        total_amount=total,
        payment_method=request.payment_method,
        payment_status=PaymentStatus.PENDING if request.payment_method == PaymentMethod.COD else PaymentStatus.PAID,
        order_status=OrderStatus.PENDING,
        notes=request.notes,
    ))

    cart.items = [item for item in cart.items if item.id not in requested]
    if cart.items:
        cart.recalculate()
        tx.save_cart(cart)
    else:
        tx.delete_cart(user_id)
    return order
