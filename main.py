import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field

import addresses
import cart
import orders
import wishlist
from checkout import CheckoutRequest, place_order
from database import INDEXED_COLLECTIONS, MongoStore, db, ensure_indexes
from errors import AppError, AuthError, ConflictError, ForbiddenError, InternalError, NotFoundError, UserNotFound
from inventory import refresh_stock_status
from schemas import (
    AddressType,
    OrderStatus,
    PaymentStatus,
    Product,
    ProductVariant,
    StockStatus,
    User,
)
from store import MemoryStore, Store

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="Checkout & Inventory API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security/JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

memory_store = MemoryStore()


def get_store() -> Store:
    if db is not None:
        return MongoStore(db)
    return memory_store


# Error responses
@app.exception_handler(AppError)
async def app_error_handler(request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    details = ", ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"status": False, "message": f"Validation error: {details}"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=InternalError().to_dict())


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    response: Dict[str, Any] = {"status": True}
    if message:
        response["message"] = message
    if data is not None:
        response["data"] = data
    return response


def public_order(order) -> Dict[str, Any]:
    return order.model_dump(exclude={"admin_notes"})


# Auth helpers
def create_token(user: User) -> str:
    payload = {
        "sub": user.id,
        "email": user.email,
        "is_admin": user.is_admin,
        "exp": datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def get_current_user(authorization: Optional[str] = Header(None), store: Store = Depends(get_store)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Authentication token is required")
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except ExpiredSignatureError:
        raise AuthError("Token has expired")
    except JWTError:
        raise AuthError("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid or expired token")
    user = store.get_user(user_id)
    if not user:
        raise UserNotFound()
    return {"user_id": user.id, "is_admin": user.is_admin}


def require_admin(user=Depends(get_current_user)):
    if not user.get("is_admin"):
        raise ForbiddenError()
    return user


# Request models
class SignupRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProductCreateRequest(BaseModel):
    slug: str
    name: str
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    images: List[str] = []
    min_order_quantity: int = Field(1, ge=1)
    has_variants: bool = False
    variants: List[ProductVariant] = []
    is_published: bool = True
    status: StockStatus = StockStatus.IN_STOCK


class AddToCartRequest(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    size_id: Optional[str] = None
    quantity: int = Field(1, ge=1)


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(..., ge=0)


class WishlistAddRequest(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    note: Optional[str] = None


class MoveToCartRequest(BaseModel):
    wishlist_item_id: str
    quantity: int = Field(1, ge=1)
    size_id: Optional[str] = None


class AddressCreateRequest(BaseModel):
    first_name: str
    last_name: str
    address_line: str
    city: str
    state: str
    pin_code: str = Field(..., pattern=r"^[0-9]{6}$")
    phone_number: str = Field(..., pattern=r"^[0-9]{10}$")
    country: str = "India"
    address_type: AddressType = AddressType.HOME
    is_default: bool = False


class AddressUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = Field(None, pattern=r"^[0-9]{6}$")
    phone_number: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    country: Optional[str] = None
    address_type: Optional[AddressType] = None
    is_default: Optional[bool] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class OrderUpdateRequest(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    cancelled_reason: Optional[str] = None


# Routes
@app.get("/")
def root():
    return {"message": "Checkout & Inventory API running"}


@app.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "store": type(store).__name__,
        "database": "⚠️  Not configured, serving from memory",
        "database_name": None,
        "collections": [],
        "indexes": {},
    }
    if db is None:
        return response
    try:
        response["database_name"] = db.name
        response["collections"] = db.list_collection_names()[:10]
        response["indexes"] = {name: sorted(db[name].index_information()) for name in INDEXED_COLLECTIONS}
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.warning(f"Database diagnostics failed: {e}")
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# Auth
@app.post("/api/auth/signup")
def signup(req: SignupRequest, store: Store = Depends(get_store)):
    if store.find_user_by_email(req.email):
        raise ConflictError("Email already registered")
    user = store.insert_user(User(name=req.name, email=req.email, password_hash=pwd_context.hash(req.password)))
    token = create_token(user)
    return {"token": token, "user": {"id": user.id, "name": user.name, "email": user.email, "is_admin": False}}


@app.post("/api/auth/login")
def login(req: LoginRequest, store: Store = Depends(get_store)):
    user = store.find_user_by_email(req.email)
    if not user or not pwd_context.verify(req.password, user.password_hash):
        raise AuthError("Invalid credentials")
    token = create_token(user)
    return {"token": token, "user": {"id": user.id, "name": user.name, "email": user.email, "is_admin": user.is_admin}}


# Products
@app.get("/api/products/{product_id}")
def get_product(product_id: str, store: Store = Depends(get_store)):
    product = store.get_product(product_id)
    if not product or not product.is_published:
        raise NotFoundError("Product not found")
    return ok(product)


@app.post("/api/products", status_code=201)
def create_product(req: ProductCreateRequest, admin=Depends(require_admin), store: Store = Depends(get_store)):
    product = store.insert_product(Product(**req.model_dump()))
    if any(variant.sizes for variant in product.variants):
        product.status = refresh_stock_status(store, product.id)
    return ok(product, "Product created successfully")


# Cart
@app.get("/api/cart")
def get_cart(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(cart.get(store, user["user_id"]))


@app.post("/api/cart/items", status_code=201)
def add_to_cart(req: AddToCartRequest, user=Depends(get_current_user), store: Store = Depends(get_store)):
    updated = cart.add_item(store, user["user_id"], req.product_id, req.variant_id, req.size_id, req.quantity)
    return ok(
        {"cart_id": updated.id, "total_items": updated.total_items, "total_price": updated.total_price},
        "Item added to cart successfully",
    )


@app.put("/api/cart/items/{item_id}")
def update_cart_item(item_id: str, req: UpdateCartItemRequest, user=Depends(get_current_user),
                     store: Store = Depends(get_store)):
    updated = cart.update_quantity(store, user["user_id"], item_id, req.quantity)
    return ok(updated, "Cart updated successfully")


@app.delete("/api/cart/items/{item_id}")
def remove_cart_item(item_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    updated = cart.remove_item(store, user["user_id"], item_id)
    return ok(updated, "Item removed from cart")


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user), store: Store = Depends(get_store)):
    cleared = cart.clear(store, user["user_id"])
    return ok(message="Cart cleared successfully" if cleared else "Cart was already empty")


# Wishlist
@app.get("/api/wishlist")
def get_wishlist(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(wishlist.get(store, user["user_id"]))


@app.post("/api/wishlist/items")
def add_to_wishlist(req: WishlistAddRequest, user=Depends(get_current_user), store: Store = Depends(get_store)):
    updated = wishlist.add_item(store, user["user_id"], req.product_id, req.variant_id, req.note)
    return ok(
        {"wishlist_id": updated.id, "item_count": updated.item_count, "added_product_id": req.product_id},
        "Product added to wishlist successfully",
    )


@app.delete("/api/wishlist/items/{item_id}")
def remove_from_wishlist(item_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    updated = wishlist.remove_item(store, user["user_id"], item_id)
    return ok({"item_count": updated.item_count}, "Product removed from wishlist")


@app.delete("/api/wishlist")
def clear_wishlist(user=Depends(get_current_user), store: Store = Depends(get_store)):
    wishlist.clear(store, user["user_id"])
    return ok(message="Wishlist cleared successfully")


@app.get("/api/wishlist/check")
def check_wishlist(product_id: str, variant_id: Optional[str] = None, user=Depends(get_current_user),
                   store: Store = Depends(get_store)):
    return ok({"in_wishlist": wishlist.contains(store, user["user_id"], product_id, variant_id)})


@app.post("/api/wishlist/move-to-cart")
def move_wishlist_item_to_cart(req: MoveToCartRequest, user=Depends(get_current_user),
                               store: Store = Depends(get_store)):
    result = wishlist.move_to_cart(store, user["user_id"], req.wishlist_item_id, req.quantity, req.size_id)
    return ok(result, "Item moved to cart successfully")


# Addresses
@app.get("/api/addresses")
def list_addresses(user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(addresses.list_addresses(store, user["user_id"]))


@app.get("/api/addresses/{address_id}")
def get_address(address_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(addresses.get(store, user["user_id"], address_id))


@app.post("/api/addresses", status_code=201)
def create_address(req: AddressCreateRequest, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(addresses.create(store, user["user_id"], req.model_dump()), "Address created successfully")


@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, req: AddressUpdateRequest, user=Depends(get_current_user),
                   store: Store = Depends(get_store)):
    updated = addresses.update(store, user["user_id"], address_id, req.model_dump(exclude_unset=True))
    return ok(updated, "Address updated successfully")


@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    promoted = addresses.delete(store, user["user_id"], address_id)
    return ok({"new_default_id": promoted.id if promoted else None}, "Address deleted successfully")


@app.put("/api/addresses/{address_id}/default")
def set_default_address(address_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(addresses.set_default(store, user["user_id"], address_id), "Default address updated")


# Orders
@app.post("/api/orders", status_code=201)
def create_order(req: CheckoutRequest, user=Depends(get_current_user), store: Store = Depends(get_store)):
    order = place_order(store, user["user_id"], req)
    return ok(
        {"order_id": order.id, "order_number": order.order_number, "total_amount": order.total_amount,
         "order": public_order(order)},
        "Order created successfully",
    )


@app.get("/api/orders")
def list_orders(page: int = 1, limit: int = 10, status: Optional[OrderStatus] = None,
                user=Depends(get_current_user), store: Store = Depends(get_store)):
    found, pagination = orders.list_orders(store, user["user_id"], status=status, page=page, limit=limit)
    return ok({"orders": [public_order(o) for o in found], "pagination": pagination})


@app.get("/api/orders/track")
def track_order(order_number: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(public_order(orders.track_order(store, user["user_id"], order_number)), "Order found")


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), store: Store = Depends(get_store)):
    return ok(public_order(orders.get_order(store, order_id, user_id=user["user_id"])))


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, req: Optional[CancelOrderRequest] = None, user=Depends(get_current_user),
                 store: Store = Depends(get_store)):
    reason = req.reason if req else None
    order = orders.cancel_order(store, user["user_id"], order_id, reason)
    return ok(public_order(order), "Order cancelled successfully")


# Admin
@app.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    return ok(orders.get_order(store, order_id))


@app.put("/api/admin/orders/{order_id}")
def admin_update_order(order_id: str, req: OrderUpdateRequest, admin=Depends(require_admin),
                       store: Store = Depends(get_store)):
    order = orders.update_order(store, order_id, **req.model_dump())
    return ok(order, "Order updated successfully")


@app.on_event("startup")
def prepare_store():
    if db is None:
        logger.warning("DATABASE_URL not set; serving from the in-memory store")
        return
    try:
        ensure_indexes(db)
    except Exception as e:
        logger.error(f"Could not create indexes: {e}")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
