"""
MongoDB access.

``db`` is the module-level database handle (``None`` when ``DATABASE_URL`` is
not configured). ``create_document``/``get_documents`` are the low-level
helpers; ``MongoStore`` implements the storage port on top of them, passing
the bound client session through every call so a ``transaction()`` block
commits or aborts as one unit.
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import ConflictError, TransactionConflict
from schemas import Address, Cart, Order, Product, User, Wishlist, new_id, utcnow
from store import Store

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "app")

db = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _oid(value: Optional[str]) -> Optional[ObjectId]:
    if value is None or not ObjectId.is_valid(str(value)):
        return None
    return ObjectId(str(value))


def to_document(model: BaseModel) -> Dict[str, Any]:
    data = _plain(model.model_dump())
    doc_id = data.pop("id", None)
    if doc_id:
        data["_id"] = ObjectId(doc_id)
    return data


def from_document(cls, doc: Optional[dict]):
    if not doc:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return cls.model_validate(doc)


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None, session=None) -> str:
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    data_dict = to_document(data) if isinstance(data, BaseModel) else dict(data)
    data_dict.setdefault("created_at", datetime.now(timezone.utc))
    data_dict["updated_at"] = datetime.now(timezone.utc)
    result = database[collection_name].insert_one(data_dict, session=session)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None, skip: int = 0, database=None, session=None) -> List[dict]:
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    cursor = database[collection_name].find(filter_dict or {}, session=session)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


INDEXED_COLLECTIONS = ("order", "cart", "wishlist", "address", "user")


def ensure_indexes(database) -> None:
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["cart"].create_index("user_id", unique=True)
    database["wishlist"].create_index("user_id", unique=True)
    database["address"].create_index([("user_id", ASCENDING), ("is_default", DESCENDING)])
    database["user"].create_index("email", unique=True)


def _size_match(variant_id: str, size_id: str, min_inventory: Optional[int] = None) -> dict:
    size_filter: Dict[str, Any] = {"id": str(size_id)}
    if min_inventory is not None:
        size_filter["inventory"] = {"$gte": min_inventory}
    return {"$elemMatch": {"id": str(variant_id), "sizes": {"$elemMatch": size_filter}}}


class MongoStore(Store):
    def __init__(self, database, session=None):
        self.db = database
        self.session = session

    @contextmanager
    def transaction(self):
        if self.session is not None:
            yield self
            return
        try:
            with self.db.client.start_session() as session:
                with session.start_transaction():
                    yield MongoStore(self.db, session=session)
        except PyMongoError as e:
            if not e.has_error_label("TransientTransactionError"):
                raise
            logger.warning(f"Transaction aborted by a concurrent write: {e}")
            raise TransactionConflict() from e

    def _find_one(self, collection: str, cls, query: dict):
        return from_document(cls, self.db[collection].find_one(query, session=self.session))

    def _save(self, collection: str, model):
        if not model.id:
            model.id = new_id()
        self.db[collection].replace_one(
            {"_id": ObjectId(model.id)}, to_document(model), upsert=True, session=self.session
        )
        return model.model_copy(deep=True)

    def _insert(self, collection: str, model):
        if not model.id:
            model.id = new_id()
        create_document(collection, model, database=self.db, session=self.session)
        return model.model_copy(deep=True)

    # Catalog
    def get_product(self, product_id):
        oid = _oid(product_id)
        return self._find_one("product", Product, {"_id": oid}) if oid else None

    def insert_product(self, product):
        return self._insert("product", product)

    def _bump_size(self, product_id, variant_id, size_id, delta, min_inventory=None) -> bool:
        oid = _oid(product_id)
        if oid is None:
            return False
        result = self.db["product"].update_one(
            {"_id": oid, "variants": _size_match(variant_id, size_id, min_inventory)},
            {"$inc": {"variants.$[v].sizes.$[s].inventory": delta}, "$set": {"updated_at": utcnow()}},
            array_filters=[{"v.id": str(variant_id)}, {"s.id": str(size_id)}],
            session=self.session,
        )
        return result.modified_count == 1

    def decrement_size_inventory(self, product_id, variant_id, size_id, quantity):
        return self._bump_size(product_id, variant_id, size_id, -quantity, min_inventory=quantity)

    def increment_size_inventory(self, product_id, variant_id, size_id, quantity):
        return self._bump_size(product_id, variant_id, size_id, quantity)

    def set_product_status(self, product_id, status):
        oid = _oid(product_id)
        if oid is not None:
            self.db["product"].update_one(
                {"_id": oid}, {"$set": {"status": _plain(status), "updated_at": utcnow()}}, session=self.session
            )

    # Cart
    def get_cart(self, user_id):
        return self._find_one("cart", Cart, {"user_id": user_id})

    def save_cart(self, cart):
        return self._save("cart", cart)

    def delete_cart(self, user_id):
        return self.db["cart"].delete_one({"user_id": user_id}, session=self.session).deleted_count == 1

    # Wishlist
    def get_wishlist(self, user_id):
        return self._find_one("wishlist", Wishlist, {"user_id": user_id, "is_default": True})

    def save_wishlist(self, wishlist):
        return self._save("wishlist", wishlist)

    # Address book
    def list_addresses(self, user_id):
        docs = get_documents(
            "address", {"user_id": user_id}, sort=[("is_default", DESCENDING), ("created_at", DESCENDING)],
            database=self.db, session=self.session,
        )
        return [from_document(Address, d) for d in docs]

    def get_address(self, user_id, address_id):
        oid = _oid(address_id)
        return self._find_one("address", Address, {"_id": oid, "user_id": user_id}) if oid else None

    def save_address(self, address):
        address.updated_at = utcnow()
        return self._save("address", address)

    def delete_address(self, user_id, address_id):
        oid = _oid(address_id)
        if oid is None:
            return False
        return self.db["address"].delete_one({"_id": oid, "user_id": user_id}, session=self.session).deleted_count == 1

    def clear_default_addresses(self, user_id, except_id=None):
        query: Dict[str, Any] = {"user_id": user_id, "is_default": True}
        if except_id:
            query["_id"] = {"$ne": _oid(except_id)}
        result = self.db["address"].update_many(
            query, {"$set": {"is_default": False, "updated_at": utcnow()}}, session=self.session
        )
        return result.modified_count

    # Orders
    def insert_order(self, order):
        try:
            return self._insert("order", order)
        except DuplicateKeyError:
            raise ConflictError(f"Order number {order.order_number} already exists")

    def get_order(self, order_id, user_id=None):
        oid = _oid(order_id)
        if oid is None:
            return None
        query: Dict[str, Any] = {"_id": oid}
        if user_id is not None:
            query["user_id"] = user_id
        return self._find_one("order", Order, query)

    def find_order_by_number(self, order_number, user_id=None):
        query: Dict[str, Any] = {"order_number": order_number}
        if user_id is not None:
            query["user_id"] = user_id
        return self._find_one("order", Order, query)

    def save_order(self, order):
        order.updated_at = utcnow()
        return self._save("order", order)

    def list_orders(self, user_id=None, status=None, skip=0, limit=10):
        query: Dict[str, Any] = {}
        if user_id is not None:
            query["user_id"] = user_id
        if status is not None:
            query["order_status"] = _plain(status)
        total = self.db["order"].count_documents(query, session=self.session)
        docs = get_documents(
            "order", query, limit=limit, sort=[("created_at", DESCENDING)], skip=skip,
            database=self.db, session=self.session,
        )
        return [from_document(Order, d) for d in docs], total

    # Users
    def get_user(self, user_id):
        oid = _oid(user_id)
        return self._find_one("user", User, {"_id": oid}) if oid else None

    def find_user_by_email(self, email):
        return self._find_one("user", User, {"email": email})

    def insert_user(self, user):
        try:
            return self._insert("user", user)
        except DuplicateKeyError:
            raise ConflictError("Email already registered")
