import pytest

from customer_orders import CustomerOrderRepository, generate_order_number
from errors import NotFound, RemoteFailure, ValidationError
from schemas import CreateCustomerOrder, CreateInventoryItem, CustomerOrderLine, UpdateCustomerOrder


@pytest.fixture
def customer_orders(store, inventory):
    return CustomerOrderRepository(store, inventory)


@pytest.fixture
def published_item(inventory):
    item_id = inventory.create(CreateInventoryItem(
        name="Widget", sku="WID-1", quantity=10, minStockLevel=2, unitPrice=3.0,
        supplierId="sup-1", supplierName="Acme",
    ), "staff-1")
    inventory.publish(item_id, "staff-1")
    return item_id


def order_for(item_id, quantity=4, unit_price=3.0):
    return CreateCustomerOrder(
        customerId="cust-1",
        customerName="Casey Buyer",
        customerEmail="casey@warehouse.io",
        items=[CustomerOrderLine(itemId=item_id, itemName="Widget", itemSku="WID-1",
                                 quantity=quantity, unitPrice=unit_price)],
        shippingAddress="1 Dock Road",
    )


def test_generate_order_number():
    number = generate_order_number()
    assert number.startswith("ORD-")
    assert len(number) == len("ORD-") + 9


def test_create_prices_lines(customer_orders, published_item):
    oid = customer_orders.create(order_for(published_item, quantity=4, unit_price=3.0))

    order = customer_orders.get_by_id(oid)
    assert order.status == "pending"
    assert order.items[0].totalPrice == 12
    assert order.totalAmount == 12
    assert [o.id for o in customer_orders.get_by_customer("cust-1")] == [oid]
    assert [o.id for o in customer_orders.get_pending()] == [oid]


def test_create_requires_published_item(customer_orders, inventory, published_item):
    inventory.unpublish(published_item, "staff-1")
    with pytest.raises(ValidationError):
        customer_orders.create(order_for(published_item))


def test_create_checks_stock(customer_orders, published_item):
    with pytest.raises(ValidationError):
        customer_orders.create(order_for(published_item, quantity=11))


def test_create_with_unknown_item(customer_orders):
    with pytest.raises(NotFound):
        customer_orders.create(order_for("64b7f0c2a1b2c3d4e5f60718"))


def test_accept_deducts_stock(customer_orders, inventory, published_item):
    oid = customer_orders.create(order_for(published_item, quantity=4))

    customer_orders.accept(oid, "staff-1")

    order = customer_orders.get_by_id(oid)
    assert order.status == "accepted"
    assert order.acceptedDate is not None
    assert inventory.get_by_id(published_item).quantity == 6
    assert inventory.get_stock_movements(published_item)[0].type == "out"

    with pytest.raises(ValidationError):
        customer_orders.accept(oid, "staff-1")


def test_accept_fails_when_stock_ran_out(customer_orders, inventory, published_item):
    first = customer_orders.create(order_for(published_item, quantity=8))
    second = customer_orders.create(order_for(published_item, quantity=8))
    customer_orders.accept(first, "staff-1")

    with pytest.raises(ValidationError):
        customer_orders.accept(second, "staff-1")
    assert customer_orders.get_by_id(second).status == "pending"
    assert inventory.get_by_id(published_item).quantity == 2


def test_cancel_and_status_dates(customer_orders, published_item):
    cancelled = customer_orders.create(order_for(published_item))
    customer_orders.cancel(cancelled, "Changed my mind", "cust-1")
    order = customer_orders.get_by_id(cancelled)
    assert order.status == "cancelled"
    assert order.cancellationReason == "Changed my mind"

    shipped = customer_orders.create(order_for(published_item))
    customer_orders.update_status(shipped, UpdateCustomerOrder(status="shipped"), "staff-1")
    assert customer_orders.get_by_id(shipped).shippedDate is not None

    customer_orders.update_status(shipped, UpdateCustomerOrder(status="delivered"), "staff-1")
    assert customer_orders.get_by_id(shipped).deliveredDate is not None


def test_statistics(customer_orders, published_item):
    delivered = customer_orders.create(order_for(published_item, quantity=2))
    customer_orders.create(order_for(published_item, quantity=1))
    customer_orders.update_status(delivered, UpdateCustomerOrder(status="delivered"), "staff-1")

    stats = customer_orders.get_statistics()
    assert stats["totalOrders"] == 2
    assert stats["pendingOrders"] == 1
    assert stats["deliveredOrders"] == 1
    assert stats["totalRevenue"] == 6


def test_create_ignores_client_prices(customer_orders, published_item):
    oid = customer_orders.create(order_for(published_item, quantity=4, unit_price=0.0))

    order = customer_orders.get_by_id(oid)
    assert order.items[0].unitPrice == 3.0
    assert order.items[0].supplierName == "Acme"
    assert order.totalAmount == 12


def test_cancel_accepted_order_restores_stock(customer_orders, inventory, published_item):
    oid = customer_orders.create(order_for(published_item, quantity=4))
    customer_orders.accept(oid, "staff-1")

    customer_orders.cancel(oid, "Customer refused delivery", "staff-1")

    assert customer_orders.get_by_id(oid).status == "cancelled"
    assert inventory.get_by_id(published_item).quantity == 10
    assert inventory.get_stock_movements(published_item)[0].type == "in"

    # a second cancel must not return the stock twice
    with pytest.raises(ValidationError):
        customer_orders.cancel(oid, "Again", "staff-1")
    assert inventory.get_by_id(published_item).quantity == 10


def test_delivered_order_cannot_be_cancelled(customer_orders, published_item):
    oid = customer_orders.create(order_for(published_item))
    customer_orders.update_status(oid, UpdateCustomerOrder(status="delivered"), "staff-1")

    with pytest.raises(ValidationError):
        customer_orders.cancel(oid, "Too late", "cust-1")
    assert customer_orders.get_by_id(oid).status == "delivered"


def test_accept_rolls_back_when_a_deduction_fails(customer_orders, inventory, published_item, monkeypatch):
    other = inventory.create(CreateInventoryItem(name="Gadget", sku="GAD-1", quantity=5, unitPrice=1.0), "staff-1")
    inventory.publish(other, "staff-1")
    oid = customer_orders.create(CreateCustomerOrder(
        customerId="cust-1", customerName="Casey Buyer", customerEmail="casey@warehouse.io",
        items=[
            CustomerOrderLine(itemId=published_item, itemName="Widget", itemSku="WID-1", quantity=4, unitPrice=3.0),
            CustomerOrderLine(itemId=other, itemName="Gadget", itemSku="GAD-1", quantity=2, unitPrice=1.0),
        ],
    ))

    adjust = inventory.adjust_stock

    def flaky_adjust(item_id, quantity, type, *args, **kwargs):
        if item_id == other and type == "out":
            raise RemoteFailure("write failed")
        return adjust(item_id, quantity, type, *args, **kwargs)

    monkeypatch.setattr(inventory, "adjust_stock", flaky_adjust)

    with pytest.raises(RemoteFailure):
        customer_orders.accept(oid, "staff-1")

    order = customer_orders.get_by_id(oid)
    assert order.status == "pending"
    assert order.acceptedDate is None
    assert inventory.get_by_id(published_item).quantity == 10
    assert inventory.get_by_id(other).quantity == 5
