import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from pymongo import DESCENDING

from database import DocumentStore, Unsubscribe
from schemas import CreateOrder, Order, OrderStatus, UpdateOrder

logger = logging.getLogger(__name__)

COLLECTION = "orders"
NEWEST_FIRST = [("createdAt", DESCENDING)]
STATUSES = ("pending", "approved", "shipped", "delivered", "cancelled")


def order_total(items) -> float:
    return sum(item.totalPrice for item in items)


class OrderRepository:
    """Purchase orders placed with suppliers."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def _query(self, filters: Optional[dict] = None, sort=NEWEST_FIRST, limit=None) -> List[Order]:
        try:
            docs = self.store.find(COLLECTION, filters, sort=sort, limit=limit)
        except Exception:
            logger.exception("Error fetching orders %s", filters)
            raise
        return [Order(**d) for d in docs]

    def get_all(self) -> List[Order]:
        return self._query()

    def get_by_id(self, id: str) -> Optional[Order]:
        doc = self.store.get(COLLECTION, id)
        return Order(**doc) if doc else None

    def create(self, order: CreateOrder) -> str:
        now = self.store.server_timestamp()
        data = order.model_dump()
        data.update({
            "orderNumber": f"ORD-{int(time.time() * 1000)}",
            "totalAmount": order_total(order.items),
            "status": "pending",
            "orderDate": now,
            "createdAt": now,
            "updatedAt": now,
        })
        try:
            return self.store.add(COLLECTION, data)
        except Exception:
            logger.exception("Error creating order for supplier %s", order.supplierId)
            raise

    def update(self, patch: UpdateOrder) -> None:
        data = patch.model_dump(exclude_unset=True, exclude={"id"})
        if patch.items is not None:
            data["totalAmount"] = order_total(patch.items)
        data["updatedAt"] = self.store.server_timestamp()
        try:
            self.store.update(COLLECTION, patch.id, data)
        except Exception:
            logger.exception("Error updating order %s", patch.id)
            raise

    def update_status(self, id: str, status: OrderStatus) -> None:
        try:
            self.store.update(COLLECTION, id, {"status": status, "updatedAt": self.store.server_timestamp()})
        except Exception:
            logger.exception("Error updating order status %s", id)
            raise

    def delete(self, id: str) -> bool:
        return self.store.delete(COLLECTION, id)

    def get_by_supplier(self, supplier_id: str) -> List[Order]:
        return self._query({"supplierId": supplier_id})

    def get_by_date_range(self, start: datetime, end: datetime) -> List[Order]:
        return self._query({"orderDate": {"$gte": start, "$lte": end}}, sort=[("orderDate", DESCENDING)])

    # Real-time subscriptions

    def _listen(self, filters, callback: Callable[[List[Order]], None], limit=None) -> Unsubscribe:
        return self.store.listen(COLLECTION, filters, NEWEST_FIRST,
                                 lambda docs: callback([Order(**d) for d in docs]), limit=limit)

    def subscribe(self, callback) -> Unsubscribe:
        return self._listen(None, callback)

    def subscribe_by_status(self, status: OrderStatus, callback) -> Unsubscribe:
        return self._listen({"status": status}, callback)

    def subscribe_recent(self, callback, limit: int = 10) -> Unsubscribe:
        return self._listen(None, callback, limit=limit)

    def get_stats(self) -> dict:
        orders = self.get_all()
        total_value = sum(o.totalAmount for o in orders)
        stats = {"total": len(orders)}
        for status in STATUSES:
            stats[status] = sum(1 for o in orders if o.status == status)
        stats["totalValue"] = total_value
        stats["averageOrderValue"] = total_value / len(orders) if orders else 0
        return stats
