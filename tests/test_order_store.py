import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import ADDRESS
from storefront.domain.models import OrderStatus
from storefront.errors import InvalidTransition, NotFound, ValidationError
from storefront.infrastructure.order_store import LineItem, OrderStore, Pricing


def _items(price="1000", quantity=1):
    return [LineItem(product_id="p-1", title="Air Zoom", quantity=quantity, unit_price=Decimal(price))]


def test_persisted_total_is_sum_of_components(make_order, store):
    order = make_order(unit_price="1000", shipping="50", tax="50")
    stored = store.get_by_id(order.id)
    assert stored.total_price == Decimal("1100.00")
    assert stored.total_price == stored.items_price + stored.shipping_price + stored.tax_price
    assert stored.status == OrderStatus.PROCESSING.value
    assert stored.is_paid is False
    assert stored.paid_at is None
    assert stored.order_number == f"ORD-{stored.created_at.year}-{stored.id:05d}"


def test_line_items_are_snapshotted(make_order):
    order = make_order(unit_price="1000", quantity=2)
    [item] = order.items
    assert (item.title, item.quantity, item.unit_price) == ("Air Zoom", 2, Decimal("1000.00"))
    assert order.items_price == Decimal("2000.00")


def test_total_mismatch_is_rejected(store):
    with pytest.raises(ValidationError) as exc:
        store.create_pending_order(
            user_id="user-1",
            items=_items(),
            shipping_address=ADDRESS,
            pricing=Pricing(Decimal("1000"), Decimal("50"), Decimal("50"), Decimal("1000")),
        )
    assert exc.value.field == "pricing.total_price"


def test_items_price_must_match_line_items(store):
    with pytest.raises(ValidationError) as exc:
        store.create_pending_order(
            user_id="user-1",
            items=_items(price="1000", quantity=2),
            shipping_address=ADDRESS,
            pricing=Pricing(Decimal("1000"), Decimal("0"), Decimal("0"), Decimal("1000")),
        )
    assert exc.value.field == "pricing.items_price"


@pytest.mark.parametrize("missing", ["full_name", "street", "city", "postal_code", "country"])
def test_incomplete_address_is_rejected(store, missing):
    address = dict(ADDRESS, **{missing: "  "})
    with pytest.raises(ValidationError) as exc:
        store.create_pending_order(
            user_id="user-1",
            items=_items(),
            shipping_address=address,
            pricing=Pricing(Decimal("1000"), Decimal("0"), Decimal("0"), Decimal("1000")),
        )
    assert exc.value.field == f"shipping_address.{missing}"


def test_zero_quantity_is_rejected(store):
    with pytest.raises(ValidationError):
        store.create_pending_order(
            user_id="user-1",
            items=_items(quantity=0),
            shipping_address=ADDRESS,
            pricing=Pricing(Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0")),
        )


def test_mark_paid_is_idempotent(make_order, store):
    order = make_order()
    first_stamp = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    paid = store.mark_paid(order.id, paid_at=first_stamp, payment_id="pay_1")
    again = store.mark_paid(order.id, paid_at=first_stamp + timedelta(hours=1), payment_id="pay_2")

    assert paid.is_paid and again.is_paid
    assert again.paid_at == paid.paid_at
    assert again.payment_id == "pay_1"
    assert again.status == OrderStatus.PROCESSING.value


def test_mark_paid_unknown_order(store):
    with pytest.raises(NotFound):
        store.mark_paid(9999)


def test_cancelled_order_cannot_be_paid(make_order, store):
    order = make_order()
    store.transition_status(order.id, "cancelled", reason="customer request")
    with pytest.raises(InvalidTransition):
        store.mark_paid(order.id)
    assert store.get_by_id(order.id).is_paid is False


def test_concurrent_mark_paid_sets_paid_at_once(make_order, session_factory):
    order_id = make_order().id
    stamps = [datetime(2024, 5, 1, 10, 0, second, tzinfo=timezone.utc) for second in range(8)]
    barrier = threading.Barrier(len(stamps))
    observed, errors = [], []

    def pay(stamp):
        session = session_factory()
        try:
            barrier.wait()
            observed.append(OrderStore(session).mark_paid(order_id, paid_at=stamp).paid_at)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=pay, args=(stamp,)) for stamp in stamps]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(observed) == len(stamps)
    # Every caller sees the same, first-written paid_at
    assert len(set(observed)) == 1
    session = session_factory()
    try:
        final = OrderStore(session).get_by_id(order_id)
    finally:
        session.close()
    assert final.paid_at == observed[0]


def test_ship_requires_payment(make_order, store):
    order = make_order()
    with pytest.raises(InvalidTransition):
        store.transition_status(order.id, "shipped")
    store.mark_paid(order.id)
    shipped = store.transition_status(order.id, "shipped", actor_id="admin-1")
    assert shipped.status == "shipped"
    assert shipped.shipped_at is not None
    assert shipped.updated_by == "admin-1"


def test_delivered_is_terminal(make_order, store):
    order = make_order()
    store.mark_paid(order.id)
    store.transition_status(order.id, "shipped")
    delivered = store.transition_status(order.id, "delivered")
    assert delivered.delivered_at is not None
    assert delivered.is_delivered

    with pytest.raises(InvalidTransition):
        store.transition_status(order.id, "cancelled", reason="too late")
    assert store.get_by_id(order.id).status == "delivered"


@pytest.mark.parametrize("current,target", [
    ("shipped", "processing"),
    ("shipped", "shipped"),
    ("processing", "delivered"),
    ("processing", "processing"),
])
def test_transitions_outside_the_table_are_rejected(make_order, store, current, target):
    order = make_order()
    store.mark_paid(order.id)
    if current == "shipped":
        store.transition_status(order.id, "shipped")
    with pytest.raises(InvalidTransition):
        store.transition_status(order.id, target)
    assert store.get_by_id(order.id).status == current


def test_cancel_from_shipped_records_reason(make_order, store):
    order = make_order()
    store.mark_paid(order.id)
    store.transition_status(order.id, "shipped")
    cancelled = store.transition_status(order.id, "cancelled", reason="  lost in transit ")
    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "lost in transit"
    assert cancelled.cancelled_at is not None
    # Paid flag is never reverted
    assert cancelled.is_paid is True


def test_cancel_requires_reason(make_order, store):
    order = make_order()
    with pytest.raises(ValidationError):
        store.transition_status(order.id, "cancelled")
    assert store.get_by_id(order.id).status == "processing"


def test_unknown_status(make_order, store):
    with pytest.raises(ValidationError):
        store.transition_status(make_order().id, "returned")


def test_list_for_user_pages_newest_first(make_order, store, settings):
    ids = [make_order(user_id="user-1").id for _ in range(3)]
    make_order(user_id="someone-else")

    page = store.list_for_user("user-1", page=1, page_size=2)
    assert page.total == 3
    assert page.total_pages == 2
    assert [o.id for o in page.orders] == [ids[2], ids[1]]

    second = store.list_for_user("user-1", page=2, page_size=2)
    assert [o.id for o in second.orders] == [ids[0]]


def test_page_size_is_capped(store, settings):
    page = store.list_for_user("user-1", page=1, page_size=10_000)
    assert page.page_size == settings.ORDERS_MAX_PAGE_SIZE
    assert store.list_for_user("user-1").page_size == settings.ORDERS_DEFAULT_PAGE_SIZE


@pytest.mark.parametrize("page,size", [(0, 10), (-1, 10), (1, 0)])
def test_pagination_must_be_positive(store, page, size):
    with pytest.raises(ValidationError):
        store.list_for_user("user-1", page=page, page_size=size)


def test_admin_listing_filters(make_order, store):
    cheap = make_order(unit_price="100", shipping="0", tax="0")
    pricey = make_order(unit_price="5000", shipping="0", tax="0")
    store.mark_paid(pricey.id)
    store.transition_status(pricey.id, "shipped")

    shipped = store.list_all(status="shipped")
    assert [o.id for o in shipped.orders] == [pricey.id]

    by_total = store.list_all(min_total=Decimal("1000"))
    assert [o.id for o in by_total.orders] == [pricey.id]

    ascending = store.list_all(sort="total_price")
    assert [o.id for o in ascending.orders] == [cheap.id, pricey.id]

    with pytest.raises(ValidationError):
        store.list_all(sort="-password")


def test_summary_and_status_counts(make_order, store):
    first = make_order(unit_price="1000", shipping="50", tax="50")
    make_order(unit_price="100", shipping="0", tax="0")
    store.transition_status(first.id, "cancelled", reason="duplicate")

    summary = store.summary()
    assert summary["total_orders"] == 2
    assert summary["total_revenue"] == pytest.approx(1200.0)
    assert summary["today_orders"] == 2

    counts = {row["status"]: row["count"] for row in store.status_counts()}
    assert counts == {"cancelled": 1, "processing": 1}


def test_payment_id_settles_only_one_order(make_order, store):
    first, second = make_order(), make_order()
    store.mark_paid(first.id, payment_id="pay_1", order_ref="order_1")

    with pytest.raises(InvalidTransition):
        store.mark_paid(second.id, payment_id="pay_1", order_ref="order_1")

    untouched = store.get_by_id(second.id)
    assert untouched.is_paid is False
    assert untouched.payment_id is None
    # The order that owns the payment can still be re-confirmed
    assert store.mark_paid(first.id, payment_id="pay_1").payment_id == "pay_1"
