"""
Walk one quantity request through the approval workflow against an in-memory
database and log what ends up in the request and inventory collections.

    python scripts/simulate_approval.py

Needs the test extra installed (mongomock).
"""
import logging

import mongomock

from config import configure_logging
from database import DocumentStore
from errors import WarehouseError
from inventory import InventoryRepository
from notifications import LoggingNotifier, NotificationRepository
from products import ProductRepository
from quantity_requests import QuantityRequestRepository
from schemas import CreateProduct, CreateQuantityRequest, QuantityResponse

logger = logging.getLogger("simulate_approval")


def main():
    configure_logging("INFO")
    store = DocumentStore(mongomock.MongoClient().warehouse)
    inventory = InventoryRepository(store)
    products = ProductRepository(store)
    requests = QuantityRequestRepository(store, inventory, products, NotificationRepository(store))
    notifier = LoggingNotifier()

    product_id = products.create(CreateProduct(
        name="Pallet Wrap", sku="PW-500", category="Packaging", price=18.5,
        supplierId="supplier-1", supplierName="Acme Packaging",
    ))
    request_id = requests.create(CreateQuantityRequest(
        productId=product_id,
        productName="Pallet Wrap",
        supplierId="supplier-1",
        supplierName="Acme Packaging",
        supplierEmail="orders@acme.io",
        requestedQuantity=100,
    ), "staff-1", "Warehouse Staff")

    resolved = requests.respond(request_id, QuantityResponse(status="approved_full"), "supplier-1")
    notifier.notify_success(f"Approved {resolved.approvedQuantity} x {resolved.productName}")
    logger.info("Request: %s", resolved.model_dump(mode="json"))

    item = inventory.find_existing(product_id, "supplier-1")
    logger.info("Inventory: %s", item.model_dump(mode="json"))

    # answering twice is refused
    try:
        requests.respond(request_id, QuantityResponse(status="approved_full"), "supplier-1")
    except WarehouseError as e:
        notifier.notify_error(e.message)

    # a second shipment of the same product tops up the existing item
    second = requests.create(CreateQuantityRequest(
        productId=product_id,
        productName="Pallet Wrap",
        supplierId="supplier-1",
        supplierName="Acme Packaging",
        supplierEmail="orders@acme.io",
        requestedQuantity=40,
    ), "staff-1", "Warehouse Staff")
    requests.respond(second, QuantityResponse(status="approved_partial", approvedQuantity=25), "supplier-1")
    item = inventory.get_by_id(item.id)
    logger.info("After partial approval: quantity=%s status=%s", item.quantity, item.status)

    for movement in inventory.get_stock_movements(item.id):
        logger.info("Movement: %s %s (%s)", movement.type, movement.quantity, movement.reason)


if __name__ == "__main__":
    main()
