"""
Database Schemas for the Checkout & Inventory service

Each Pydantic model maps to a MongoDB collection (lowercased class name).
Derived fields (cart totals, wishlist counts, product stock status) are
recomputed by the model's own methods right after its item list changes.

Collections:
- user
- product
- cart
- wishlist
- address
- order
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, EmailStr, Field

LOW_STOCK_THRESHOLD = 10


def new_id() -> str:
    return str(ObjectId())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockStatus(str, Enum):
    DRAFT = "draft"
    IN_STOCK = "in-stock"
    LOW_STOCK = "low-stock"
    OUT_OF_STOCK = "out-of-stock"
    ARCHIVED = "archived"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    COD = "cod"
    UPI = "upi"
    CARD = "card"


class AddressType(str, Enum):
    HOME = "home"
    WORK = "work"
    OTHER = "other"


def same_id(a: Optional[object], b: Optional[object]) -> bool:
    """Canonical comparison for product, variant, size and line-item ids.

    Ids are opaque string keys; ObjectId values compare by their string form
    and an empty value only matches another empty value.
    """
    if not a or not b:
        return not a and not b
    return str(a) == str(b)


def stock_status_for(total_inventory: int) -> StockStatus:
    if total_inventory <= 0:
        return StockStatus.OUT_OF_STOCK
    if total_inventory <= LOW_STOCK_THRESHOLD:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    id: Optional[str] = None
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    is_admin: bool = Field(False, description="Admin user flag")


class ProductSize(BaseModel):
    id: str = Field(default_factory=new_id)
    size: str
    inventory: int = Field(0, ge=0)
    sku: Optional[str] = None
    is_active: bool = True


class ProductVariant(BaseModel):
    id: str = Field(default_factory=new_id)
    color: str
    price: float = Field(..., ge=0)
    images: List[str] = Field(default_factory=list)
    sizes: List[ProductSize] = Field(default_factory=list)
    is_active: bool = True

    def find_size(self, size_id: Optional[str]) -> Optional[ProductSize]:
        return next((s for s in self.sizes if same_id(s.id, size_id)), None)


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    id: Optional[str] = None
    slug: str = Field(..., description="URL slug")
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: Optional[float] = Field(None, ge=0, description="Base price for products without variants")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    min_order_quantity: int = Field(1, ge=1, description="Minimum quantity per order line")
    has_variants: bool = Field(False, description="Whether a variant must be selected")
    variants: List[ProductVariant] = Field(default_factory=list)
    is_published: bool = Field(False, description="Visible to customers")
    status: StockStatus = Field(StockStatus.DRAFT, description="Aggregate stock status")

    def find_variant(self, variant_id: Optional[str]) -> Optional[ProductVariant]:
        return next((v for v in self.variants if same_id(v.id, variant_id)), None)

    def total_inventory(self) -> int:
        return sum(size.inventory for variant in self.variants for size in variant.sizes)

    def refresh_status(self) -> StockStatus:
        self.status = stock_status_for(self.total_inventory())
        return self.status


class CartItem(BaseModel):
    id: str = Field(default_factory=new_id)
    product_id: str
    variant_id: Optional[str] = None
    size_id: Optional[str] = None
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0, description="Unit price snapshotted when added")
    name: str
    color: Optional[str] = None
    size: Optional[str] = None
    image: Optional[str] = None


class Cart(BaseModel):
    """
    Shopping cart collection schema
    Collection name: "cart"
    """
    id: Optional[str] = None
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0.0

    def find_item(self, item_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if same_id(i.id, item_id)), None)

    def find_line(self, product_id: str, variant_id: Optional[str] = None,
                  size_id: Optional[str] = None) -> Optional[CartItem]:
        for item in self.items:
            if (same_id(item.product_id, product_id) and same_id(item.variant_id, variant_id)
                    and same_id(item.size_id, size_id)):
                return item
        return None

    def recalculate(self) -> None:
        self.total_items = sum(item.quantity for item in self.items)
        self.total_price = round(sum(item.price * item.quantity for item in self.items), 2)


class WishlistItem(BaseModel):
    id: str = Field(default_factory=new_id)
    product_id: str
    variant_id: Optional[str] = None
    note: Optional[str] = None
    added_at: datetime = Field(default_factory=utcnow)


class Wishlist(BaseModel):
    """
    Wishlist collection schema
    Collection name: "wishlist"
    """
    id: Optional[str] = None
    user_id: str
    name: str = "My Wishlist"
    is_default: bool = True
    items: List[WishlistItem] = Field(default_factory=list)
    item_count: int = 0

    def find_item(self, item_id: str) -> Optional[WishlistItem]:
        return next((i for i in self.items if same_id(i.id, item_id)), None)

    def find_entry(self, product_id: str, variant_id: Optional[str] = None) -> Optional[WishlistItem]:
        for item in self.items:
            if same_id(item.product_id, product_id) and same_id(item.variant_id, variant_id):
                return item
        return None

    def recalculate(self) -> None:
        self.item_count = len(self.items)


class Address(BaseModel):
    """
    Addresses collection schema
    Collection name: "address"
    """
    id: Optional[str] = None
    user_id: str
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    address_line: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pin_code: str = Field(..., pattern=r"^[0-9]{6}$", description="6-digit PIN code")
    phone_number: str = Field(..., pattern=r"^[0-9]{10}$", description="10-digit phone number")
    country: str = "India"
    address_type: AddressType = AddressType.HOME
    is_default: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AddressSnapshot(BaseModel):
    """Copy of an address frozen onto an order."""
    first_name: str
    last_name: str
    address_line: str
    city: str
    state: str
    pin_code: str
    phone_number: str
    country: str
    address_type: AddressType

    @classmethod
    def of(cls, address: Address) -> "AddressSnapshot":
        return cls(**address.model_dump(include=set(cls.model_fields)))


class OrderItem(BaseModel):
    product_id: str
    product_name: str
    variant_id: Optional[str] = None
    size_id: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    image: Optional[str] = None


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    id: Optional[str] = None
    order_number: str
    user_id: str
    items: List[OrderItem]
    shipping_address: AddressSnapshot
    billing_address: Optional[AddressSnapshot] = None
    subtotal: float = Field(..., ge=0)
    shipping_charge: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    total_amount: float
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.PENDING
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    cancelled_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    shipping_date: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


def order_total(subtotal: float, shipping_charge: float, tax: float, discount: float) -> float:
    return round(subtotal + shipping_charge + tax - discount, 2)
