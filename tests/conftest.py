import pytest
from fastapi.testclient import TestClient

import addresses
import cart
import checkout
import main
from checkout import CheckoutRequest
from schemas import PaymentMethod, Product, ProductSize, ProductVariant, StockStatus, User
from store import MemoryStore

ADDRESS = {
    "first_name": "Asha",
    "last_name": "Rao",
    "address_line": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pin_code": "560001",
    "phone_number": "9876543210",
}


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_product(store):
    """Insert a published product with one variant holding sizes M and L."""
    def _make(m_inventory=5, l_inventory=20, price=499.0, **overrides):
        variant = ProductVariant(
            color="Black",
            price=price,
            images=["black.jpg"],
            sizes=[
                ProductSize(size="M", inventory=m_inventory, sku="TS-BLK-M"),
                ProductSize(size="L", inventory=l_inventory, sku="TS-BLK-L"),
            ],
        )
        fields = dict(
            slug="classic-tee",
            name="Classic Tee",
            images=["tee.jpg"],
            has_variants=True,
            variants=[variant],
            is_published=True,
        )
        fields.update(overrides)
        product = Product(**fields)
        product.refresh_status()
        return store.insert_product(product)
    return _make


@pytest.fixture
def make_simple_product(store):
    """Insert a published product sold without variants."""
    def _make(price=99.0, min_order_quantity=1, **overrides):
        fields = dict(
            slug="gift-card",
            name="Gift Card",
            price=price,
            min_order_quantity=min_order_quantity,
            is_published=True,
            status=StockStatus.IN_STOCK,
        )
        fields.update(overrides)
        return store.insert_product(Product(**fields))
    return _make


@pytest.fixture
def make_address(store):
    def _make(user_id="user-1", **overrides):
        return addresses.create(store, user_id, {**ADDRESS, **overrides})
    return _make


@pytest.fixture
def client(store):
    main.app.dependency_overrides[main.get_store] = lambda: store
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(store):
    """Create a user directly in the store and return bearer headers for it."""
    def _make(email="shopper@mailbox.in", is_admin=False):
        user = store.insert_user(User(
            name="Shopper", email=email, password_hash=main.pwd_context.hash("secret"), is_admin=is_admin,
        ))
        return {"Authorization": f"Bearer {main.create_token(user)}"}
    return _make


@pytest.fixture
def place_order(store, make_product, make_address):
    """Put ``quantity`` units of size M in the cart and check the whole cart out."""
    def _place(user_id="user-1", quantity=2, payment_method=PaymentMethod.COD, product=None):
        product = product or make_product()
        variant = product.variants[0]
        address = make_address(user_id)
        updated = cart.add_item(store, user_id, product.id, variant.id, variant.sizes[0].id, quantity)
        request = CheckoutRequest(
            address_id=address.id,
            cart_item_ids=[item.id for item in updated.items],
            payment_method=payment_method,
        )
        return checkout.place_order(store, user_id, request)
    return _place
