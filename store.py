"""
Storage port used by every domain operation, plus an in-process implementation.

Domain code never talks to pymongo directly: it receives a ``Store`` and
wraps multi-document work in ``with store.transaction() as tx:``. The Mongo
adapter lives in ``database.py``; ``MemoryStore`` backs local runs without
a database and the test-suite.
"""
import copy
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple, TypeVar

from errors import ConflictError, TransactionConflict
from schemas import (
    Address,
    Cart,
    Order,
    OrderStatus,
    Product,
    StockStatus,
    User,
    Wishlist,
    new_id,
    same_id,
    utcnow,
)

logger = logging.getLogger(__name__)

TRANSACTION_ATTEMPTS = 3

T = TypeVar("T")


class Store:
    """Boundary between the domain and the document store."""

    # Catalog
    def get_product(self, product_id: str) -> Optional[Product]:
        raise NotImplementedError

    def insert_product(self, product: Product) -> Product:
        raise NotImplementedError

    def decrement_size_inventory(self, product_id: str, variant_id: str, size_id: str, quantity: int) -> bool:
        """Atomically subtract ``quantity`` if the size still holds at least that much."""
        raise NotImplementedError

    def increment_size_inventory(self, product_id: str, variant_id: str, size_id: str, quantity: int) -> bool:
        raise NotImplementedError

    def set_product_status(self, product_id: str, status: StockStatus) -> None:
        raise NotImplementedError

    # Cart
    def get_cart(self, user_id: str) -> Optional[Cart]:
        raise NotImplementedError

    def save_cart(self, cart: Cart) -> Cart:
        raise NotImplementedError

    def delete_cart(self, user_id: str) -> bool:
        raise NotImplementedError

    # Wishlist
    def get_wishlist(self, user_id: str) -> Optional[Wishlist]:
        raise NotImplementedError

    def save_wishlist(self, wishlist: Wishlist) -> Wishlist:
        raise NotImplementedError

    # Address book
    def list_addresses(self, user_id: str) -> List[Address]:
        """Default first, then newest first."""
        raise NotImplementedError

    def get_address(self, user_id: str, address_id: str) -> Optional[Address]:
        raise NotImplementedError

    def save_address(self, address: Address) -> Address:
        raise NotImplementedError

    def delete_address(self, user_id: str, address_id: str) -> bool:
        raise NotImplementedError

    def clear_default_addresses(self, user_id: str, except_id: Optional[str] = None) -> int:
        raise NotImplementedError

    # Orders
    def insert_order(self, order: Order) -> Order:
        raise NotImplementedError

    def get_order(self, order_id: str, user_id: Optional[str] = None) -> Optional[Order]:
        raise NotImplementedError

    def find_order_by_number(self, order_number: str, user_id: Optional[str] = None) -> Optional[Order]:
        raise NotImplementedError

    def save_order(self, order: Order) -> Order:
        raise NotImplementedError

    def list_orders(self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None,
                    skip: int = 0, limit: int = 10) -> Tuple[List[Order], int]:
        raise NotImplementedError

    # Users
    def get_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def find_user_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    def insert_user(self, user: User) -> User:
        raise NotImplementedError

    def transaction(self):
        """Context manager yielding a store bound to one all-or-nothing unit of work."""
        raise NotImplementedError


def run_in_transaction(store: "Store", func: Callable[..., T], *args, attempts: int = TRANSACTION_ATTEMPTS,
                       **kwargs) -> T:
    """Call ``func(tx, *args, **kwargs)`` in a transaction, retrying it when aborted by a concurrent write.

    Each attempt re-reads everything, so a retry sees the winner's writes.
    """
    for attempt in range(1, attempts + 1):
        try:
            with store.transaction() as tx:
                return func(tx, *args, **kwargs)
        except TransactionConflict:
            if attempt == attempts:
                raise
            logger.info(f"Transaction conflict on attempt {attempt}/{attempts}, retrying")
    raise TransactionConflict()


class MemoryStore(Store):
    """Thread-safe in-process store.

    A transaction holds the store lock for its whole duration and restores a
    snapshot of every collection if the block raises, so concurrent callers
    observe either all of a transaction's writes or none of them.
    """

    COLLECTIONS = ("user", "product", "cart", "wishlist", "address", "order")

    def __init__(self):
        self._lock = threading.RLock()
        self._data: Dict[str, Dict[str, dict]] = {name: {} for name in self.COLLECTIONS}

    @contextmanager
    def transaction(self) -> Iterator["MemoryStore"]:
        with self._lock:
            snapshot = copy.deepcopy(self._data)
            try:
                yield self
            except BaseException:
                self._data = snapshot
                raise

    def _put(self, collection: str, model):
        if not model.id:
            model.id = new_id()
        with self._lock:
            self._data[collection][model.id] = model.model_dump()
        return model.model_copy(deep=True)

    def _find(self, collection: str, cls, **match):
        with self._lock:
            for doc in self._data[collection].values():
                if all(same_id(doc.get(k), v) for k, v in match.items()):
                    return cls.model_validate(copy.deepcopy(doc))
        return None

    def _size_doc(self, product_id, variant_id, size_id) -> Tuple[Optional[dict], Optional[dict]]:
        product = self._data["product"].get(str(product_id))
        if product is None:
            return None, None
        for variant in product["variants"]:
            if same_id(variant["id"], variant_id):
                for size in variant["sizes"]:
                    if same_id(size["id"], size_id):
                        return product, size
        return product, None

    # Catalog
    def get_product(self, product_id):
        return self._find("product", Product, id=product_id)

    def insert_product(self, product):
        return self._put("product", product)

    def decrement_size_inventory(self, product_id, variant_id, size_id, quantity):
        with self._lock:
            product, size = self._size_doc(product_id, variant_id, size_id)
            if size is None or size["inventory"] < quantity:
                return False
            size["inventory"] -= quantity
            return True

    def increment_size_inventory(self, product_id, variant_id, size_id, quantity):
        with self._lock:
            product, size = self._size_doc(product_id, variant_id, size_id)
            if size is None:
                return False
            size["inventory"] += quantity
            return True

    def set_product_status(self, product_id, status):
        with self._lock:
            product = self._data["product"].get(str(product_id))
            if product is not None:
                product["status"] = StockStatus(status)

    # Cart
    def get_cart(self, user_id):
        return self._find("cart", Cart, user_id=user_id)

    def save_cart(self, cart):
        existing = self.get_cart(cart.user_id)
        if existing and not cart.id:
            cart.id = existing.id
        return self._put("cart", cart)

    def delete_cart(self, user_id):
        with self._lock:
            cart = self.get_cart(user_id)
            if cart is None:
                return False
            del self._data["cart"][cart.id]
            return True

    # Wishlist
    def get_wishlist(self, user_id):
        return self._find("wishlist", Wishlist, user_id=user_id, is_default=True)

    def save_wishlist(self, wishlist):
        return self._put("wishlist", wishlist)

    # Address book
    def list_addresses(self, user_id):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._data["address"].values() if same_id(d["user_id"], user_id)]
        docs.sort(key=lambda d: d["created_at"], reverse=True)
        docs.sort(key=lambda d: not d["is_default"])
        return [Address.model_validate(d) for d in docs]

    def get_address(self, user_id, address_id):
        return self._find("address", Address, id=address_id, user_id=user_id)

    def save_address(self, address):
        address.updated_at = utcnow()
        return self._put("address", address)

    def delete_address(self, user_id, address_id):
        with self._lock:
            if self.get_address(user_id, address_id) is None:
                return False
            del self._data["address"][str(address_id)]
            return True

    def clear_default_addresses(self, user_id, except_id=None):
        changed = 0
        with self._lock:
            for doc in self._data["address"].values():
                if same_id(doc["user_id"], user_id) and doc["is_default"] and not same_id(doc["id"], except_id):
                    doc["is_default"] = False
                    doc["updated_at"] = utcnow()
                    changed += 1
        return changed

    # Orders
    def insert_order(self, order):
        if self.find_order_by_number(order.order_number) is not None:
            raise ConflictError(f"Order number {order.order_number} already exists")
        return self._put("order", order)

    def get_order(self, order_id, user_id=None):
        match = {"id": order_id}
        if user_id is not None:
            match["user_id"] = user_id
        return self._find("order", Order, **match)

    def find_order_by_number(self, order_number, user_id=None):
        match = {"order_number": order_number}
        if user_id is not None:
            match["user_id"] = user_id
        return self._find("order", Order, **match)

    def save_order(self, order):
        order.updated_at = utcnow()
        return self._put("order", order)

    def list_orders(self, user_id=None, status=None, skip=0, limit=10):
        with self._lock:
            docs = [
                copy.deepcopy(d) for d in self._data["order"].values()
                if (user_id is None or same_id(d["user_id"], user_id))
                and (status is None or d["order_status"] == OrderStatus(status))
            ]
        docs.sort(key=lambda d: d["created_at"], reverse=True)
        return [Order.model_validate(d) for d in docs[skip:skip + limit]], len(docs)

    # Users
    def get_user(self, user_id):
        return self._find("user", User, id=user_id)

    def find_user_by_email(self, email):
        return self._find("user", User, email=email)

    def insert_user(self, user):
        return self._put("user", user)
