from datetime import timedelta

import pytest

from errors import NotFound
from orders import OrderRepository, order_total
from schemas import CreateOrder, OrderItem, UpdateOrder


@pytest.fixture
def orders(store):
    return OrderRepository(store)


def line(item_id="item-1", quantity=2, unit_price=5.0):
    return OrderItem(itemId=item_id, itemName=item_id.title(), quantity=quantity, unitPrice=unit_price,
                     totalPrice=quantity * unit_price)


def new_order(*items, supplier_id="sup-1"):
    return CreateOrder(supplierId=supplier_id, supplierName="Acme", items=list(items) or [line()],
                       requestedBy="staff-1")


def test_order_total():
    assert order_total([line(quantity=2, unit_price=5), line(quantity=1, unit_price=3.5)]) == 13.5
    assert order_total([]) == 0


def test_create_sets_number_total_and_status(orders):
    oid = orders.create(new_order(line(quantity=3, unit_price=4), line("item-2", 1, 10)))

    order = orders.get_by_id(oid)
    assert order.orderNumber.startswith("ORD-")
    assert order.totalAmount == 22
    assert order.status == "pending"
    assert order.orderDate is not None


def test_update_recomputes_total_when_items_change(orders):
    oid = orders.create(new_order())

    orders.update(UpdateOrder(id=oid, notes="rush"))
    assert orders.get_by_id(oid).totalAmount == 10

    orders.update(UpdateOrder(id=oid, items=[line(quantity=10, unit_price=1)]))
    order = orders.get_by_id(oid)
    assert order.totalAmount == 10
    assert order.items[0].quantity == 10
    assert order.notes == "rush"


def test_update_status_and_missing(orders):
    oid = orders.create(new_order())
    orders.update_status(oid, "approved")
    assert orders.get_by_id(oid).status == "approved"

    with pytest.raises(NotFound):
        orders.update_status("64b7f0c2a1b2c3d4e5f60718", "shipped")


def test_supplier_and_date_range_queries(orders, store):
    first = orders.create(new_order(supplier_id="sup-1"))
    orders.create(new_order(supplier_id="sup-2"))

    assert [o.id for o in orders.get_by_supplier("sup-1")] == [first]

    placed = orders.get_by_id(first).orderDate
    window = orders.get_by_date_range(placed - timedelta(seconds=1), placed + timedelta(seconds=1))
    assert first in [o.id for o in window]
    assert orders.get_by_date_range(placed + timedelta(days=1), placed + timedelta(days=2)) == []


def test_subscriptions(orders):
    pending, recent = [], []
    stop_pending = orders.subscribe_by_status("pending", pending.append)
    stop_recent = orders.subscribe_recent(recent.append, limit=2)

    ids = [orders.create(new_order()) for _ in range(3)]
    orders.update_status(ids[0], "approved")

    assert [o.id for o in pending[-1]] == [ids[2], ids[1]]
    assert [o.id for o in recent[-1]] == [ids[2], ids[1]]
    stop_pending()
    stop_recent()


def test_stats(orders):
    a = orders.create(new_order(line(quantity=1, unit_price=10)))
    orders.create(new_order(line(quantity=1, unit_price=30)))
    orders.update_status(a, "delivered")

    stats = orders.get_stats()
    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert stats["delivered"] == 1
    assert stats["totalValue"] == 40
    assert stats["averageOrderValue"] == 20


def test_stats_when_empty(orders):
    assert orders.get_stats()["averageOrderValue"] == 0


def test_delete(orders):
    oid = orders.create(new_order())
    assert orders.delete(oid) is True
    assert orders.get_by_id(oid) is None
