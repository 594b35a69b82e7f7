"""
Cart operations.

Availability is checked read-only here; inventory is only decremented at
checkout. Totals are recomputed from the full item list after every change.
"""
from typing import Any, Dict, Optional

from errors import NotFoundError, ProductUnavailable, ValidationError
from inventory import Selection, check_availability, is_available
from schemas import Cart, CartItem
from store import Store


def put_line(cart: Cart, selection: Selection, quantity: int) -> CartItem:
    """Merge ``quantity`` into the line for this product/variant/size, or add one.

    The merged total is re-validated against current inventory.
    """
    product = selection.product
    variant_id = selection.variant.id if selection.variant else None
    size_id = selection.size.id if selection.size else None
    line = cart.find_line(product.id, variant_id, size_id)
    if line is not None:
        new_quantity = line.quantity + quantity
        check_availability(product, variant_id, size_id, new_quantity, label=line.name)
        line.quantity = new_quantity
    else:
        line = CartItem(
            product_id=product.id,
            variant_id=variant_id,
            size_id=size_id,
            quantity=quantity,
            price=selection.unit_price,
            name=product.name,
            color=selection.color,
            size=selection.size_label,
            image=selection.image,
        )
        cart.items.append(line)
    cart.recalculate()
    return line


def add_item(store: Store, user_id: str, product_id: str, variant_id: Optional[str] = None,
             size_id: Optional[str] = None, quantity: int = 1) -> Cart:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")
    with store.transaction() as tx:
        product = tx.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found")
        selection = check_availability(product, variant_id, size_id, quantity)
        cart = tx.get_cart(user_id) or Cart(user_id=user_id)
        put_line(cart, selection, quantity)
        return tx.save_cart(cart)


def _load(store: Store, user_id: str, item_id: str):
    cart = store.get_cart(user_id)
    if cart is None:
        raise NotFoundError("Cart not found")
    item = cart.find_item(item_id)
    if item is None:
        raise NotFoundError("Cart item not found")
    return cart, item


def update_quantity(store: Store, user_id: str, item_id: str, quantity: int) -> Cart:
    """Set a line to ``quantity`` units; zero removes the line."""
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative", field="quantity")
    with store.transaction() as tx:
        cart, item = _load(tx, user_id, item_id)
        if quantity == 0:
            cart.items.remove(item)
        else:
            product = tx.get_product(item.product_id)
            if product is None:
                raise ProductUnavailable("Product no longer exists", item=item.name)
            check_availability(product, item.variant_id, item.size_id, quantity, label=item.name)
            item.quantity = quantity
        cart.recalculate()
        return tx.save_cart(cart)


def remove_item(store: Store, user_id: str, item_id: str) -> Cart:
    with store.transaction() as tx:
        cart, item = _load(tx, user_id, item_id)
        cart.items.remove(item)
        cart.recalculate()
        return tx.save_cart(cart)


def clear(store: Store, user_id: str) -> bool:
    return store.delete_cart(user_id)


def get(store: Store, user_id: str) -> Dict[str, Any]:
    """Cart with a live ``is_available`` flag per line; stored data is untouched."""
    cart = store.get_cart(user_id)
    if cart is None:
        return {"items": [], "total_items": 0, "total_price": 0}
    products = {}
    items = []
    for item in cart.items:
        if item.product_id not in products:
            products[item.product_id] = store.get_product(item.product_id)
        product = products[item.product_id]
        items.append({
            **item.model_dump(),
            "is_available": is_available(product, item.variant_id, item.size_id, item.quantity),
        })
    return {**cart.model_dump(), "items": items}
