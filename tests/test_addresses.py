import pytest

import addresses
from errors import NotFoundError, ValidationError


def defaults(store, user_id="user-1"):
    return [a.id for a in store.list_addresses(user_id) if a.is_default]


def test_first_address_becomes_default(store, make_address):
    first = make_address()
    second = make_address()
    assert first.is_default
    assert not second.is_default
    assert defaults(store) == [first.id]


def test_set_default_then_delete_promotes_remaining(store, make_address):
    a = make_address()
    b = make_address(address_type="work")

    addresses.set_default(store, "user-1", b.id)
    assert not addresses.get(store, "user-1", a.id).is_default
    assert addresses.get(store, "user-1", b.id).is_default
    assert defaults(store) == [b.id]

    promoted = addresses.delete(store, "user-1", b.id)
    assert promoted.id == a.id
    assert defaults(store) == [a.id]


def test_delete_default_promotes_newest(store, make_address):
    oldest = make_address()
    make_address(city="Pune")
    newest = make_address(city="Chennai")

    promoted = addresses.delete(store, "user-1", oldest.id)
    assert promoted.id == newest.id
    assert defaults(store) == [newest.id]


def test_delete_last_address_leaves_no_default(store, make_address):
    only = make_address()
    assert addresses.delete(store, "user-1", only.id) is None
    assert store.list_addresses("user-1") == []


def test_delete_non_default(store, make_address):
    make_address()
    other = make_address()
    assert addresses.delete(store, "user-1", other.id) is None
    with pytest.raises(NotFoundError):
        addresses.get(store, "user-1", other.id)


def test_create_with_default_moves_the_flag(store, make_address):
    make_address()
    second = make_address(is_default=True)
    assert defaults(store) == [second.id]


def test_update_with_default_moves_the_flag(store, make_address):
    first = make_address()
    second = make_address()
    addresses.update(store, "user-1", second.id, {"is_default": True, "city": "Mysuru"})
    assert defaults(store) == [second.id]
    assert addresses.get(store, "user-1", second.id).city == "Mysuru"
    assert addresses.get(store, "user-1", first.id).city == "Bengaluru"


def test_default_cannot_be_unset_directly(store, make_address):
    first = make_address()
    with pytest.raises(ValidationError):
        addresses.update(store, "user-1", first.id, {"is_default": False})
    assert defaults(store) == [first.id]


def test_invalid_pin_code_is_rejected(store, make_address):
    with pytest.raises(ValidationError) as exc:
        make_address(pin_code="12")
    assert "pin_code" in exc.value.message
    assert store.list_addresses("user-1") == []


def test_addresses_are_owner_scoped(store, make_address):
    mine = make_address("user-1")
    make_address("user-2")
    with pytest.raises(NotFoundError):
        addresses.set_default(store, "user-2", mine.id)
    assert defaults(store, "user-1") == [mine.id]
    assert len(defaults(store, "user-2")) == 1
