"""
Inventory reservation engine.

``check_availability`` is the single read-only validation used by the cart,
the wishlist move and checkout. ``reserve`` validates every line and
decrements size inventory with the store's conditional "decrement if
sufficient" primitive inside one transaction; ``restore`` is its best-effort
inverse used when an order is cancelled.
"""
import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from errors import AvailabilityError, BelowMinimumOrder, InsufficientInventory, ProductUnavailable, VariantUnavailable
from schemas import Product, ProductSize, ProductVariant, StockStatus
from store import Store

logger = logging.getLogger(__name__)

PURCHASABLE_STATUSES = (StockStatus.IN_STOCK,)


class LineItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    size_id: Optional[str] = None
    quantity: int = Field(..., ge=1)
    name: Optional[str] = None
    ref: Optional[str] = Field(None, description="Cart item id the line came from")


class Selection(BaseModel):
    """Resolved product/variant/size for one line and its live price."""
    product: Product
    variant: Optional[ProductVariant] = None
    size: Optional[ProductSize] = None
    unit_price: float
    image: Optional[str] = None

    @property
    def color(self) -> Optional[str]:
        return self.variant.color if self.variant else None

    @property
    def size_label(self) -> Optional[str]:
        return self.size.size if self.size else None


class ReservedLine(BaseModel):
    line: LineItem
    selection: Selection
    decremented: bool = False


class Reservation(BaseModel):
    lines: List[ReservedLine] = Field(default_factory=list)


def check_availability(product: Optional[Product], variant_id: Optional[str], size_id: Optional[str],
                       quantity: int, label: Optional[str] = None) -> Selection:
    """Validate a product/variant/size selection for ``quantity`` units.

    Raises an ``AvailabilityError`` subclass naming ``label`` (the line's
    display name) when the selection cannot be bought right now.
    """
    label = label or (product.name if product else "item")
    if product is None or not product.is_published or product.status not in PURCHASABLE_STATUSES:
        raise ProductUnavailable(f"Product {label} is not available for purchase", item=label)

    if not product.has_variants:
        if quantity < product.min_order_quantity:
            raise BelowMinimumOrder(
                product.min_order_quantity,
                f"Minimum order quantity for {label} is {product.min_order_quantity}",
                item=label,
            )
        if product.price is None:
            raise ProductUnavailable(f"Product price not found for {label}", item=label)
        return Selection(product=product, unit_price=product.price, image=next(iter(product.images), None))

    if not variant_id:
        raise VariantUnavailable(f"Please select a variant for {label}", item=label)
    variant = product.find_variant(variant_id)
    if variant is None or not variant.is_active:
        raise VariantUnavailable(f"Selected variant for {label} is not available", item=label)

    image = next(iter(variant.images), None) or next(iter(product.images), None)
    size = None
    if variant.sizes:
        if not size_id:
            raise InsufficientInventory(0, f"Please select a size for {label}", item=label)
        size = variant.find_size(size_id)
        if size is None or not size.is_active:
            raise InsufficientInventory(0, f"Selected size for {label} is not available", item=label)
        if size.inventory < quantity:
            raise InsufficientInventory(
                size.inventory, f"Only {size.inventory} items available for {label} ({size.size})", item=label
            )
    return Selection(product=product, variant=variant, size=size, unit_price=variant.price, image=image)


def is_available(product: Optional[Product], variant_id: Optional[str], size_id: Optional[str], quantity: int) -> bool:
    try:
        check_availability(product, variant_id, size_id, quantity)
    except AvailabilityError:
        return False
    return True


def refresh_stock_status(store: Store, product_id: str) -> Optional[StockStatus]:
    product = store.get_product(product_id)
    if product is None:
        return None
    status = product.refresh_status()
    store.set_product_status(product_id, status)
    return status


def _available(store: Store, product_id: str, variant_id: str, size_id: str) -> int:
    product = store.get_product(product_id)
    variant = product.find_variant(variant_id) if product else None
    size = variant.find_size(size_id) if variant else None
    return size.inventory if size else 0


def reserve(store: Store, items: Iterable[LineItem]) -> Reservation:
    """Validate and decrement inventory for every line, all or nothing.

    Every line is validated against the catalog as loaded at the start of
    the transaction before anything is decremented, and stock status is
    refreshed once per product after all decrements.
    """
    reservation = Reservation()
    with store.transaction() as tx:
        products: Dict[str, Optional[Product]] = {}
        for item in items:
            if item.product_id not in products:
                products[item.product_id] = tx.get_product(item.product_id)
            label = item.name or item.product_id
            selection = check_availability(
                products[item.product_id], item.variant_id, item.size_id, item.quantity, label=label
            )
            reservation.lines.append(ReservedLine(line=item, selection=selection))

        touched: List[str] = []
        for reserved in reservation.lines:
            selection, line = reserved.selection, reserved.line
            if selection.size is None:
                continue
            product_id, variant_id, size_id = selection.product.id, selection.variant.id, selection.size.id
            if not tx.decrement_size_inventory(product_id, variant_id, size_id, line.quantity):
                available = _available(tx, product_id, variant_id, size_id)
                label = line.name or line.product_id
                raise InsufficientInventory(
                    available,
                    f"Only {available} items available for {label} ({selection.size.size})",
                    item=label,
                )
            reserved.decremented = True
            if product_id not in touched:
                touched.append(product_id)

        for product_id in touched:
            refresh_stock_status(tx, product_id)
    return reservation


def restore(store: Store, items: Iterable) -> int:
    """Give back inventory for order lines that carry both a variant and a size.

    Never raises: a product, variant or size deleted since the order was
    placed is skipped with a warning, and unexpected store errors are logged.
    Returns the number of lines restored.
    """
    restored = 0
    for item in items:
        if not (item.variant_id and item.size_id):
            continue
        try:
            if store.increment_size_inventory(item.product_id, item.variant_id, item.size_id, item.quantity):
                refresh_stock_status(store, item.product_id)
                restored += 1
            else:
                logger.warning(
                    f"Skipping inventory restore for product {item.product_id} "
                    f"variant {item.variant_id} size {item.size_id}: no longer exists"
                )
        except Exception as e:
            logger.error(f"Error restoring inventory for product {item.product_id}: {e}")
    return restored
