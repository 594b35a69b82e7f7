"""
Order lifecycle: order-status and payment-status state machines.

``apply_status``/``apply_payment_status`` mutate an ``Order`` in memory and
enforce the transition tables; the service functions below load the order,
apply the change and persist it inside one store transaction. When an order
enters ``cancelled`` its inventory is restored after that transaction commits,
so a failed restore is logged and never undoes the cancellation.
"""
import logging
import random
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

import inventory
from errors import ConflictError, InvalidTransitionError, NotFoundError
from schemas import Order, OrderStatus, PaymentMethod, PaymentStatus, utcnow
from store import Store

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.REFUNDED: frozenset(),
}

USER_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING})

ORDER_NUMBER_ATTEMPTS = 10


def generate_order_number(now: Optional[datetime] = None) -> str:
    """``YYYYMMDD`` followed by a 5-digit random suffix. Unique, not unguessable."""
    now = now or utcnow()
    return f"{now.strftime('%Y%m%d')}{random.randint(10000, 99999)}"


def next_order_number(store: Store) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        number = generate_order_number()
        if store.find_order_by_number(number) is None:
            return number
    raise ConflictError("Could not allocate a unique order number, please retry")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(order: Order, target: PaymentStatus) -> bool:
    current, target = PaymentStatus(order.payment_status), PaymentStatus(target)
    if target in PAYMENT_TRANSITIONS[current]:
        return True
    # post-hoc COD settlement
    return (order.order_status == OrderStatus.DELIVERED
            and current == PaymentStatus.PENDING and target == PaymentStatus.PAID)


def apply_payment_status(order: Order, target: PaymentStatus) -> Order:
    target = PaymentStatus(target)
    if not can_transition_payment(order, target):
        raise InvalidTransitionError(order.payment_status, target)
    order.payment_status = target
    return order


def apply_status(order: Order, target: OrderStatus, reason: Optional[str] = None,
                 now: Optional[datetime] = None) -> bool:
    """Move ``order`` to ``target`` and apply the coupled side effects.

    Returns True when the caller must restore the order's inventory.
    """
    target = OrderStatus(target)
    if not can_transition(order.order_status, target):
        raise InvalidTransitionError(order.order_status, target)
    now = now or utcnow()
    order.order_status = target

    if target == OrderStatus.CANCELLED:
        order.cancelled_at = now
        order.cancelled_reason = reason or order.cancelled_reason
        if order.payment_status == PaymentStatus.PAID:
            order.payment_status = PaymentStatus.REFUNDED
        elif order.payment_method == PaymentMethod.COD and order.payment_status == PaymentStatus.PENDING:
            order.payment_status = PaymentStatus.FAILED
        return True

    if target == OrderStatus.SHIPPED:
        order.shipping_date = now
    elif target == OrderStatus.DELIVERED:
        order.delivered_at = now
        if order.payment_method == PaymentMethod.COD and order.payment_status == PaymentStatus.PENDING:
            order.payment_status = PaymentStatus.PAID
    elif target == OrderStatus.REFUNDED and order.payment_status == PaymentStatus.PAID:
        order.payment_status = PaymentStatus.REFUNDED
    return False


def _load(store: Store, order_id: str, user_id: Optional[str] = None) -> Order:
    order = store.get_order(order_id, user_id=user_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _change_status(order: Order, target: OrderStatus, reason: Optional[str] = None) -> bool:
    previous = order.order_status
    needs_restore = apply_status(order, target, reason=reason)
    logger.info(f"Order {order.order_number} moved from {previous.value} to {order.order_status.value}")
    return needs_restore


def _restore_inventory(store: Store, order: Order) -> None:
    """Runs after the cancellation has committed, outside its transaction."""
    restored = inventory.restore(store, order.items)
    logger.info(f"Restored inventory for {restored} lines of order {order.order_number}")


def transition_order(store: Store, order_id: str, target: OrderStatus, reason: Optional[str] = None,
                     user_id: Optional[str] = None) -> Order:
    with store.transaction() as tx:
        order = _load(tx, order_id, user_id)
        needs_restore = _change_status(order, target, reason)
        saved = tx.save_order(order)
    if needs_restore:
        _restore_inventory(store, saved)
    return saved


def cancel_order(store: Store, user_id: str, order_id: str, reason: Optional[str] = None) -> Order:
    """Customer-initiated cancellation, only before the order ships."""
    with store.transaction() as tx:
        order = _load(tx, order_id, user_id)
        if order.order_status not in USER_CANCELLABLE:
            raise InvalidTransitionError(
                order.order_status, OrderStatus.CANCELLED,
                message=f"Cannot cancel in {order.order_status.value} state",
            )
        _change_status(order, OrderStatus.CANCELLED, reason or "Cancelled by customer")
        saved = tx.save_order(order)
    _restore_inventory(store, saved)
    return saved


def update_order(store: Store, order_id: str, status: Optional[OrderStatus] = None,
                 payment_status: Optional[PaymentStatus] = None, tracking_number: Optional[str] = None,
                 courier_name: Optional[str] = None, notes: Optional[str] = None,
                 admin_notes: Optional[str] = None, cancelled_reason: Optional[str] = None) -> Order:
    """Admin update: status change plus payment, tracking and note fields.

    A requested payment status the status change already produced is not an error.
    """
    needs_restore = False
    with store.transaction() as tx:
        order = _load(tx, order_id)
        if status is not None:
            needs_restore = _change_status(order, status, cancelled_reason or "Cancelled by admin")
        if payment_status is not None and PaymentStatus(payment_status) != order.payment_status:
            apply_payment_status(order, payment_status)
        if tracking_number:
            order.tracking_number = tracking_number
        if courier_name:
            order.courier_name = courier_name
        if notes is not None:
            order.notes = notes
        if admin_notes is not None:
            order.admin_notes = admin_notes
        saved = tx.save_order(order)
    if needs_restore:
        _restore_inventory(store, saved)
    return saved


def get_order(store: Store, order_id: str, user_id: Optional[str] = None) -> Order:
    return _load(store, order_id, user_id)


def track_order(store: Store, user_id: str, order_number: str) -> Order:
    order = store.find_order_by_number(order_number.strip().upper(), user_id=user_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def list_orders(store: Store, user_id: Optional[str], status: Optional[OrderStatus] = None,
                page: int = 1, limit: int = 10) -> Tuple[List[Order], dict]:
    page, limit = max(page, 1), max(min(limit, 100), 1)
    orders, total = store.list_orders(user_id=user_id, status=status, skip=(page - 1) * limit, limit=limit)
    total_pages = (total + limit - 1) // limit
    pagination = {
        "current_page": page,
        "total_pages": total_pages,
        "total_orders": total,
        "has_next_page": page * limit < total,
        "has_previous_page": page > 1,
    }
    return orders, pagination
