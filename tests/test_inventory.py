import pytest

import inventory
from errors import BelowMinimumOrder, InsufficientInventory, ProductUnavailable, VariantUnavailable
from inventory import LineItem
from schemas import OrderItem, StockStatus, stock_status_for


@pytest.mark.parametrize("total, expected", [
    (0, StockStatus.OUT_OF_STOCK),
    (1, StockStatus.LOW_STOCK),
    (10, StockStatus.LOW_STOCK),
    (11, StockStatus.IN_STOCK),
])
def test_stock_status_thresholds(total, expected):
    assert stock_status_for(total) == expected


def test_unpublished_product_is_unavailable(make_product):
    product = make_product(is_published=False)
    variant = product.variants[0]
    with pytest.raises(ProductUnavailable):
        inventory.check_availability(product, variant.id, variant.sizes[0].id, 1)


def test_missing_product_is_unavailable():
    with pytest.raises(ProductUnavailable):
        inventory.check_availability(None, "v", "s", 1)


def test_unknown_variant_is_rejected(make_product):
    product = make_product()
    with pytest.raises(VariantUnavailable):
        inventory.check_availability(product, "does-not-exist", None, 1)


def test_variant_is_mandatory(make_product):
    product = make_product()
    with pytest.raises(VariantUnavailable):
        inventory.check_availability(product, None, None, 1)


def test_unknown_size_reports_zero_available(make_product):
    product = make_product()
    variant = product.variants[0]
    with pytest.raises(InsufficientInventory) as exc:
        inventory.check_availability(product, variant.id, "does-not-exist", 1)
    assert exc.value.available == 0


def test_quantity_above_inventory_reports_remaining(make_product):
    product = make_product(m_inventory=5)
    variant = product.variants[0]
    with pytest.raises(InsufficientInventory) as exc:
        inventory.check_availability(product, variant.id, variant.sizes[0].id, 6)
    assert exc.value.available == 5
    assert exc.value.to_dict()["available"] == 5


def test_minimum_order_quantity_for_variantless_product(make_simple_product):
    product = make_simple_product(min_order_quantity=3)
    with pytest.raises(BelowMinimumOrder) as exc:
        inventory.check_availability(product, None, None, 2)
    assert exc.value.minimum == 3
    selection = inventory.check_availability(product, None, None, 3)
    assert selection.unit_price == product.price


def test_reserve_decrements_and_refreshes_status(store, make_product):
    product = make_product(m_inventory=5, l_inventory=6)
    variant = product.variants[0]
    inventory.reserve(store, [LineItem(product_id=product.id, variant_id=variant.id,
                                       size_id=variant.sizes[0].id, quantity=3)])

    reloaded = store.get_product(product.id)
    assert reloaded.variants[0].sizes[0].inventory == 2
    assert reloaded.total_inventory() == 8
    assert reloaded.status == StockStatus.LOW_STOCK


def test_reserve_to_zero_marks_out_of_stock(store, make_product):
    product = make_product(m_inventory=5, l_inventory=6)
    variant = product.variants[0]
    inventory.reserve(store, [
        LineItem(product_id=product.id, variant_id=variant.id, size_id=variant.sizes[0].id, quantity=5),
        LineItem(product_id=product.id, variant_id=variant.id, size_id=variant.sizes[1].id, quantity=6),
    ])
    assert store.get_product(product.id).status == StockStatus.OUT_OF_STOCK


def test_reserve_is_all_or_nothing(store, make_product):
    first = make_product(m_inventory=5)
    second = make_product(slug="hoodie", name="Hoodie", m_inventory=1)
    v1, v2 = first.variants[0], second.variants[0]

    with pytest.raises(InsufficientInventory) as exc:
        inventory.reserve(store, [
            LineItem(product_id=first.id, variant_id=v1.id, size_id=v1.sizes[0].id, quantity=2),
            LineItem(product_id=second.id, variant_id=v2.id, size_id=v2.sizes[0].id, quantity=2, name="Hoodie"),
        ])

    assert exc.value.available == 1
    assert exc.value.extra["item"] == "Hoodie"
    assert store.get_product(first.id).variants[0].sizes[0].inventory == 5
    assert store.get_product(second.id).variants[0].sizes[0].inventory == 1


def test_reserve_then_restore_round_trip(store, make_product):
    product = make_product(m_inventory=5, l_inventory=20)
    variant = product.variants[0]
    before = store.get_product(product.id)
    items = [
        LineItem(product_id=product.id, variant_id=variant.id, size_id=variant.sizes[0].id, quantity=4),
        LineItem(product_id=product.id, variant_id=variant.id, size_id=variant.sizes[1].id, quantity=7),
    ]
    inventory.reserve(store, items)
    assert inventory.restore(store, items) == 2

    after = store.get_product(product.id)
    assert [s.inventory for s in after.variants[0].sizes] == [s.inventory for s in before.variants[0].sizes]
    assert after.status == before.status


def test_restore_skips_missing_entities_and_variantless_lines(store, make_product):
    product = make_product()
    variant = product.variants[0]
    items = [
        OrderItem(product_id=product.id, product_name="Classic Tee", variant_id=variant.id,
                  size_id="gone", quantity=1, unit_price=1, total_price=1),
        OrderItem(product_id="missing-product", product_name="Ghost", variant_id="v", size_id="s",
                  quantity=1, unit_price=1, total_price=1),
        OrderItem(product_id=product.id, product_name="Classic Tee", quantity=1, unit_price=1, total_price=1),
    ]
    assert inventory.restore(store, items) == 0
    assert store.get_product(product.id).variants[0].sizes[0].inventory == 5


def test_is_available_reflects_live_inventory(make_product):
    product = make_product(m_inventory=2)
    variant = product.variants[0]
    assert inventory.is_available(product, variant.id, variant.sizes[0].id, 2)
    assert not inventory.is_available(product, variant.id, variant.sizes[0].id, 3)
