"""Unit tests for the pure order rules: state machine and cart validation."""

import itertools
import uuid

import pytest

from marketplace_orders import errors
from marketplace_orders.domain import (
    ALLOWED_TRANSITIONS,
    CartItem,
    InventoryEffect,
    OrderStatus,
    OrderUpdate,
    PaymentStatus,
    ProductSnapshot,
    check_transition,
    merge_cart_items,
    validate_cart,
)

S = OrderStatus

ALLOWED = {
    (S.PENDING, S.CONFIRMED): InventoryEffect.DEDUCT,
    (S.PENDING, S.CANCELLED): InventoryEffect.NONE,
    (S.CONFIRMED, S.READY): InventoryEffect.NONE,
    (S.CONFIRMED, S.CANCELLED): InventoryEffect.RESTORE,
    (S.READY, S.OUT_FOR_DELIVERY): InventoryEffect.NONE,
    (S.READY, S.DELIVERED): InventoryEffect.NONE,
    (S.READY, S.CANCELLED): InventoryEffect.NONE,
    (S.OUT_FOR_DELIVERY, S.DELIVERED): InventoryEffect.NONE,
    (S.OUT_FOR_DELIVERY, S.CANCELLED): InventoryEffect.NONE,
}
FORBIDDEN_PAIRS = [p for p in itertools.product(S, S) if p not in ALLOWED]


@pytest.mark.parametrize("edge,effect", ALLOWED.items())
def test_allowed_edges_return_their_inventory_effect(edge, effect):
    assert check_transition(*edge) is effect


@pytest.mark.parametrize("current,requested", FORBIDDEN_PAIRS)
def test_every_other_pair_is_an_invalid_transition(current, requested):
    with pytest.raises(errors.ConflictError) as e:
        check_transition(current, requested)
    assert e.value.code == "INVALID_STATUS_TRANSITION"
    assert e.value.status_code == 400
    assert e.value.context == {"current_status": current.value, "requested_status": requested.value}


def test_delivered_and_cancelled_are_terminal():
    assert {s for s, targets in ALLOWED_TRANSITIONS.items() if not targets} == {S.DELIVERED, S.CANCELLED}
    assert set(ALLOWED_TRANSITIONS) == set(S)


def _product(business_id, price=500, qty=5, name="Tea"):
    return ProductSnapshot(id=uuid.uuid4(), business_id=business_id, name=name, price_cents=price, quantity=qty)


def test_validate_cart_groups_by_seller_in_cart_order():
    seller_a, seller_b = uuid.uuid4(), uuid.uuid4()
    a1, b1, a2 = _product(seller_a, 250), _product(seller_b, 1000), _product(seller_a, 100)
    items = [CartItem(a1.id, 2), CartItem(b1.id, 1), CartItem(a2.id, 3)]

    groups = validate_cart(items, [b1, a2, a1])

    assert [g.business_id for g in groups] == [seller_a, seller_b]
    assert [line.product_id for line in groups[0].lines] == [a1.id, a2.id]
    assert groups[0].subtotal_cents == 2 * 250 + 3 * 100
    assert groups[1].subtotal_cents == 1000


def test_validate_cart_reports_every_missing_product():
    seller = uuid.uuid4()
    known = _product(seller)
    ghost_1, ghost_2 = uuid.uuid4(), uuid.uuid4()
    with pytest.raises(errors.NotFoundError) as e:
        validate_cart([CartItem(known.id, 1), CartItem(ghost_1, 1), CartItem(ghost_2, 1)], [known])
    assert e.value.code == "PRODUCT_NOT_FOUND"
    assert set(e.value.context["product_ids"]) == {str(ghost_1), str(ghost_2)}


def test_validate_cart_out_of_stock():
    empty = _product(uuid.uuid4(), qty=0, name="Sold out")
    with pytest.raises(errors.ConflictError) as e:
        validate_cart([CartItem(empty.id, 1)], [empty])
    assert e.value.code == "OUT_OF_STOCK"


def test_validate_cart_insufficient_inventory_carries_quantities():
    p = _product(uuid.uuid4(), qty=2)
    with pytest.raises(errors.ConflictError) as e:
        validate_cart([CartItem(p.id, 3)], [p])
    assert e.value.code == "INSUFFICIENT_INVENTORY"
    assert e.value.context["available"] == 2
    assert e.value.context["requested"] == 3


def test_validate_cart_rejects_empty_cart_and_bad_quantity():
    with pytest.raises(errors.ValidationError):
        validate_cart([], [])
    p = _product(uuid.uuid4())
    with pytest.raises(errors.ValidationError):
        validate_cart([CartItem(p.id, 0)], [p])


def test_merge_cart_items_sums_repeated_products():
    pid, other = uuid.uuid4(), uuid.uuid4()
    merged = merge_cart_items([CartItem(pid, 1), CartItem(other, 2), CartItem(pid, 4)])
    assert merged == [CartItem(pid, 5), CartItem(other, 2)]


def test_order_update_only_carries_set_fields():
    assert OrderUpdate().changes() == {}
    assert OrderUpdate(status=S.READY).changes() == {"status": "ready"}
    assert OrderUpdate(status=S.CANCELLED, payment_status=PaymentStatus.FAILED).changes() == {
        "status": "cancelled",
        "payment_status": "failed",
    }
