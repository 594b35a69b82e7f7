from contextlib import contextmanager, nullcontext
from types import SimpleNamespace

import pytest
from pymongo.errors import OperationFailure

import cart
import checkout
import orders
from checkout import CheckoutRequest
from database import MongoStore
from errors import TransactionConflict
from schemas import OrderStatus
from store import MemoryStore


class InstrumentedStore(MemoryStore):
    """Memory store that can abort outermost transactions and fail restocking."""

    def __init__(self):
        super().__init__()
        self.depth = 0
        self.conflicts = 0
        self.fail_restock = False
        self.restock_depths = []

    @contextmanager
    def transaction(self):
        self.depth += 1
        try:
            with super().transaction() as tx:
                yield tx
                if self.depth == 1 and self.conflicts:
                    self.conflicts -= 1
                    raise TransactionConflict()
        finally:
            self.depth -= 1

    def increment_size_inventory(self, product_id, variant_id, size_id, quantity):
        self.restock_depths.append(self.depth)
        if self.fail_restock:
            raise RuntimeError("connection reset")
        return super().increment_size_inventory(product_id, variant_id, size_id, quantity)


@pytest.fixture
def store():
    return InstrumentedStore()


def medium_inventory(store, product):
    return store.get_product(product.id).variants[0].sizes[0].inventory


def fill_cart(store, make_product, make_address, quantity=2):
    product = make_product(m_inventory=5)
    variant = product.variants[0]
    address = make_address("user-1")
    current = cart.add_item(store, "user-1", product.id, variant.id, variant.sizes[0].id, quantity)
    request = CheckoutRequest(address_id=address.id, cart_item_ids=[i.id for i in current.items])
    return product, request


def test_checkout_is_retried_after_a_conflict(store, make_product, make_address):
    product, request = fill_cart(store, make_product, make_address)
    store.conflicts = 1

    order = checkout.place_order(store, "user-1", request)

    assert store.conflicts == 0
    assert medium_inventory(store, product) == 3
    assert store.list_orders(user_id="user-1")[1] == 1
    assert store.get_order(order.id) is not None
    assert store.get_cart("user-1") is None


def test_checkout_gives_up_after_repeated_conflicts(store, make_product, make_address):
    product, request = fill_cart(store, make_product, make_address)
    store.conflicts = 10

    with pytest.raises(TransactionConflict) as exc:
        checkout.place_order(store, "user-1", request)

    assert exc.value.status_code == 409
    assert medium_inventory(store, product) == 5
    assert store.list_orders(user_id="user-1") == ([], 0)
    assert len(store.get_cart("user-1").items) == 1


@pytest.mark.parametrize("cancel", [
    lambda store, order_id: orders.cancel_order(store, "user-1", order_id),
    lambda store, order_id: orders.update_order(store, order_id, status=OrderStatus.CANCELLED),
])
def test_failed_restock_never_undoes_cancellation(store, make_product, place_order, cancel):
    product = make_product(m_inventory=5)
    order = place_order(quantity=2, product=product)
    store.fail_restock = True

    cancelled = cancel(store, order.id)

    assert cancelled.order_status == OrderStatus.CANCELLED
    assert store.get_order(order.id).order_status == OrderStatus.CANCELLED
    assert store.restock_depths == [0]
    assert medium_inventory(store, product) == 3


def test_restock_runs_after_the_cancellation_commits(store, make_product, place_order):
    product = make_product(m_inventory=5)
    order = place_order(quantity=2, product=product)

    orders.transition_order(store, order.id, OrderStatus.CANCELLED)

    assert store.restock_depths == [0]
    assert medium_inventory(store, product) == 5


class FakeSession:
    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def start_transaction(self):
        return nullcontext()


def mongo_store():
    return MongoStore(SimpleNamespace(client=SimpleNamespace(start_session=FakeSession)))


def test_mongo_write_conflict_becomes_transaction_conflict():
    with pytest.raises(TransactionConflict):
        with mongo_store().transaction():
            raise OperationFailure(
                "WriteConflict", code=112, details={"errorLabels": ["TransientTransactionError"]}
            )


def test_other_mongo_errors_pass_through():
    with pytest.raises(OperationFailure):
        with mongo_store().transaction():
            raise OperationFailure("Unauthorized", code=13)
