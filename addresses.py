"""
Address book.

At most one address per user is the default. Every change that sets a new
default clears the others in the same transaction, and deleting the default
promotes the most recently created remaining address.
"""
from typing import Any, Dict, List, Optional

import pydantic

from errors import NotFoundError, ValidationError
from schemas import Address
from store import Store


def _build(data: Dict[str, Any]) -> Address:
    try:
        return Address(**data)
    except pydantic.ValidationError as e:
        details = ", ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Validation error: {details}")


def list_addresses(store: Store, user_id: str) -> List[Address]:
    return store.list_addresses(user_id)


def get(store: Store, user_id: str, address_id: str) -> Address:
    address = store.get_address(user_id, address_id)
    if address is None:
        raise NotFoundError("Address not found")
    return address


def create(store: Store, user_id: str, data: Dict[str, Any]) -> Address:
    with store.transaction() as tx:
        address = _build({**data, "user_id": user_id})
        if not tx.list_addresses(user_id):
            address.is_default = True
        if address.is_default:
            tx.clear_default_addresses(user_id)
        return tx.save_address(address)


def update(store: Store, user_id: str, address_id: str, changes: Dict[str, Any]) -> Address:
    changes = {k: v for k, v in changes.items() if v is not None}
    with store.transaction() as tx:
        current = get(tx, user_id, address_id)
        if current.is_default and changes.get("is_default") is False:
            raise ValidationError(
                "The default address cannot be unset; set another address as default instead",
                field="is_default",
            )
        address = _build({
            **current.model_dump(),
            **changes,
            "id": current.id,
            "user_id": user_id,
            "created_at": current.created_at,
        })
        if address.is_default:
            tx.clear_default_addresses(user_id, except_id=address.id)
        return tx.save_address(address)


def delete(store: Store, user_id: str, address_id: str) -> Optional[Address]:
    """Delete an address; returns the address promoted to default, if any."""
    with store.transaction() as tx:
        current = get(tx, user_id, address_id)
        tx.delete_address(user_id, address_id)
        if not current.is_default:
            return None
        remaining = tx.list_addresses(user_id)
        if not remaining:
            return None
        promoted = max(remaining, key=lambda a: a.created_at)
        promoted.is_default = True
        return tx.save_address(promoted)


def set_default(store: Store, user_id: str, address_id: str) -> Address:
    with store.transaction() as tx:
        address = get(tx, user_id, address_id)
        tx.clear_default_addresses(user_id, except_id=address.id)
        address.is_default = True
        return tx.save_address(address)
