"""
Wishlist operations and the all-or-nothing wishlist → cart move.
"""
import logging
from typing import Any, Dict, Optional

from cart import put_line
from errors import ConflictError, NotFoundError, ValidationError
from inventory import PURCHASABLE_STATUSES, check_availability
from schemas import Cart, Wishlist, WishlistItem, same_id
from store import Store

logger = logging.getLogger(__name__)


def _summary(product, variant_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if product is None:
        return None
    variant = product.find_variant(variant_id) if variant_id else None
    if variant is None and product.has_variants and product.variants:
        variant = product.variants[0]
    price = variant.price if variant else product.price
    images = (variant.images if variant and variant.images else None) or product.images
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "price": price,
        "images": images,
        "status": product.status,
        "min_order_quantity": product.min_order_quantity,
        "is_available": product.is_published and product.status in PURCHASABLE_STATUSES,
    }


def get(store: Store, user_id: str) -> Dict[str, Any]:
    wishlist = store.get_wishlist(user_id)
    if wishlist is None:
        return {"items": [], "item_count": 0, "name": "My Wishlist", "is_default": True}
    items = []
    for item in wishlist.items:
        product = _summary(store.get_product(item.product_id), item.variant_id)
        if product is not None:
            items.append({**item.model_dump(), "product": product})
    return {**wishlist.model_dump(), "items": items}


def add_item(store: Store, user_id: str, product_id: str, variant_id: Optional[str] = None,
             note: Optional[str] = None) -> Wishlist:
    with store.transaction() as tx:
        if tx.get_product(product_id) is None:
            raise NotFoundError("Product not found")
        wishlist = tx.get_wishlist(user_id) or Wishlist(user_id=user_id)
        if wishlist.find_entry(product_id, variant_id) is not None:
            raise ConflictError("Product is already in your wishlist")
        wishlist.items.append(WishlistItem(product_id=product_id, variant_id=variant_id, note=note))
        wishlist.recalculate()
        return tx.save_wishlist(wishlist)


def remove_item(store: Store, user_id: str, item_id: str) -> Wishlist:
    with store.transaction() as tx:
        wishlist = tx.get_wishlist(user_id)
        item = wishlist.find_item(item_id) if wishlist else None
        if item is None:
            raise NotFoundError("Wishlist item not found")
        wishlist.items.remove(item)
        wishlist.recalculate()
        return tx.save_wishlist(wishlist)


def clear(store: Store, user_id: str) -> Optional[Wishlist]:
    with store.transaction() as tx:
        wishlist = tx.get_wishlist(user_id)
        if wishlist is None:
            return None
        wishlist.items = []
        wishlist.recalculate()
        return tx.save_wishlist(wishlist)


def contains(store: Store, user_id: str, product_id: str, variant_id: Optional[str] = None) -> bool:
    wishlist = store.get_wishlist(user_id)
    if wishlist is None:
        return False
    if variant_id:
        return wishlist.find_entry(product_id, variant_id) is not None
    return any(same_id(item.product_id, product_id) for item in wishlist.items)


def move_to_cart(store: Store, user_id: str, wishlist_item_id: str, quantity: int = 1,
                 size_id: Optional[str] = None) -> Dict[str, Any]:
    """Move one wishlist entry into the cart; either both documents change or neither does."""
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")
    with store.transaction() as tx:
        wishlist = tx.get_wishlist(user_id)
        if wishlist is None:
            raise NotFoundError("Wishlist not found")
        entry = wishlist.find_item(wishlist_item_id)
        if entry is None:
            raise NotFoundError("Wishlist item not found")
        product = tx.get_product(entry.product_id)
        if product is None:
            raise NotFoundError("Product not found")

        variant_id = entry.variant_id
        if not variant_id and product.has_variants and product.variants:
            variant_id = product.variants[0].id
        selection = check_availability(product, variant_id, size_id, quantity)

        cart = tx.get_cart(user_id) or Cart(user_id=user_id)
        line = put_line(cart, selection, quantity)
        wishlist.items.remove(entry)
        wishlist.recalculate()
        cart = tx.save_cart(cart)
        wishlist = tx.save_wishlist(wishlist)

    logger.info(f"Moved wishlist item {wishlist_item_id} to cart for user {user_id}")
    return {
        "cart_item_id": line.id,
        "wishlist_item_id": wishlist_item_id,
        "total_items": cart.total_items,
        "total_price": cart.total_price,
        "wishlist_item_count": wishlist.item_count,
    }
