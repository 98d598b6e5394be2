import logging
import random
import time
from typing import List, Optional

from pymongo import DESCENDING

from database import DocumentStore
from errors import NotFound, ValidationError
from inventory import InventoryRepository
from schemas import CreateCustomerOrder, CustomerOrder, InventoryItem, UpdateCustomerOrder

logger = logging.getLogger(__name__)

COLLECTION = "customerOrders"
NEWEST_FIRST = [("orderDate", DESCENDING)]


def generate_order_number() -> str:
    stamp = str(int(time.time() * 1000))[-6:]
    return f"ORD-{stamp}{random.randint(0, 999):03d}"


class CustomerOrderRepository:
    def __init__(self, store: DocumentStore, inventory: InventoryRepository):
        self.store = store
        self.inventory = inventory

    def _check_stock(self, item_id: str, item_name: str, quantity: int, require_published: bool) -> InventoryItem:
        item = self.inventory.get_by_id(item_id)
        if item is None:
            raise NotFound(f"Product {item_name} not found")
        if require_published and not item.isPublished:
            raise ValidationError(f"Product {item_name} is not available for purchase")
        if item.quantity < quantity:
            raise ValidationError(
                f"Insufficient stock for {item_name}. Available: {item.quantity}, Requested: {quantity}"
            )
        return item

    def create(self, order: CreateCustomerOrder) -> str:
        """Lines are priced from the inventory, whatever unit price the caller sent."""
        stocked = [
            self._check_stock(line.itemId, line.itemName, line.quantity, require_published=True)
            for line in order.items
        ]

        items = []
        for line, stock in zip(order.items, stocked):
            item = line.model_dump()
            item.update({
                "itemName": stock.name,
                "itemSku": stock.sku,
                "unitPrice": stock.unitPrice,
                "totalPrice": line.quantity * stock.unitPrice,
                "supplierId": stock.supplierId,
                "supplierName": stock.supplierName,
            })
            items.append(item)

        now = self.store.server_timestamp()
        data = order.model_dump()
        data.update({
            "items": items,
            "totalAmount": sum(i["totalPrice"] for i in items),
            "orderNumber": generate_order_number(),
            "status": "pending",
            "orderDate": now,
            "createdAt": now,
            "updatedAt": now,
        })
        try:
            return self.store.add(COLLECTION, data)
        except Exception:
            logger.exception("Error creating customer order for %s", order.customerId)
            raise

    def _query(self, filters: Optional[dict] = None) -> List[CustomerOrder]:
        try:
            docs = self.store.find(COLLECTION, filters, sort=NEWEST_FIRST)
        except Exception:
            logger.exception("Error fetching customer orders %s", filters)
            raise
        return [CustomerOrder(**d) for d in docs]

    def get_all(self) -> List[CustomerOrder]:
        return self._query()

    def get_by_customer(self, customer_id: str) -> List[CustomerOrder]:
        return self._query({"customerId": customer_id})

    def get_pending(self) -> List[CustomerOrder]:
        return self._query({"status": "pending"})

    def get_by_id(self, order_id: str) -> Optional[CustomerOrder]:
        doc = self.store.get(COLLECTION, order_id)
        return CustomerOrder(**doc) if doc else None

    def _claim(self, order: CustomerOrder, status: str, patch: dict) -> None:
        try:
            self.store.update(COLLECTION, order.id, patch, expect={"status": status})
        except NotFound:
            raise ValidationError(f"Order {order.orderNumber} is no longer {status}")

    def accept(self, order_id: str, user_id: str) -> None:
        """
        Accept a pending order and take its lines out of stock.

        The status flip is a compare-and-set on pending, so two staff members
        cannot both accept. If a deduction fails, the lines already taken are
        put back and the order returns to pending.
        """
        order = self.get_by_id(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.status != "pending":
            raise ValidationError(f"Order {order.orderNumber} is {order.status}, not pending")

        for line in order.items:
            self._check_stock(line.itemId, line.itemName, line.quantity, require_published=False)

        now = self.store.server_timestamp()
        self._claim(order, "pending", {"status": "accepted", "acceptedDate": now, "updatedAt": now})

        taken = []
        try:
            for line in order.items:
                self.inventory.adjust_stock(
                    line.itemId, line.quantity, "out", f"Order {order.orderNumber}", user_id,
                    f"Customer order accepted - {line.quantity} units sold",
                )
                taken.append(line)
        except Exception:
            logger.exception("Error deducting stock for customer order %s", order.orderNumber)
            for line in taken:
                self.inventory.adjust_stock(
                    line.itemId, line.quantity, "in", f"Order {order.orderNumber} rolled back", user_id,
                )
            self.store.update(COLLECTION, order_id, {
                "status": "pending", "acceptedDate": None, "updatedAt": self.store.server_timestamp(),
            })
            raise
        logger.info("Customer order %s accepted by %s", order.orderNumber, user_id)

    def cancel(self, order_id: str, reason: str, user_id: str) -> None:
        """Cancel a pending or accepted order. Stock taken on acceptance goes back."""
        order = self.get_by_id(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.status not in ("pending", "accepted"):
            raise ValidationError(f"Order {order.orderNumber} is {order.status} and cannot be cancelled")

        self._claim(order, order.status, {
            "status": "cancelled",
            "cancellationReason": reason,
            "updatedAt": self.store.server_timestamp(),
        })
        if order.status == "accepted":
            for line in order.items:
                self.inventory.adjust_stock(
                    line.itemId, line.quantity, "in", f"Order {order.orderNumber} cancelled", user_id,
                    f"Customer order cancelled - {line.quantity} units returned",
                )
        logger.info("Customer order %s cancelled by %s", order.orderNumber, user_id)

    def update_status(self, order_id: str, updates: UpdateCustomerOrder, user_id: str) -> None:
        data = updates.model_dump(exclude_unset=True)
        now = self.store.server_timestamp()
        if updates.status == "shipped" and not updates.shippedDate:
            data["shippedDate"] = now
        if updates.status == "delivered" and not updates.deliveredDate:
            data["deliveredDate"] = now
        data["updatedAt"] = now
        try:
            self.store.update(COLLECTION, order_id, data)
        except Exception:
            logger.exception("Error updating customer order %s", order_id)
            raise

    def get_statistics(self) -> dict:
        orders = self.get_all()
        return {
            "totalOrders": len(orders),
            "pendingOrders": sum(1 for o in orders if o.status == "pending"),
            "acceptedOrders": sum(1 for o in orders if o.status == "accepted"),
            "shippedOrders": sum(1 for o in orders if o.status == "shipped"),
            "deliveredOrders": sum(1 for o in orders if o.status == "delivered"),
            "cancelledOrders": sum(1 for o in orders if o.status == "cancelled"),
            "totalRevenue": sum(o.totalAmount for o in orders if o.status == "delivered"),
        }
