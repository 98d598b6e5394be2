import logging
from typing import Callable, List, Optional

from pymongo import ASCENDING, DESCENDING

from database import DocumentStore, Unsubscribe
from errors import NotFound, ValidationError
from schemas import (
    CreateInventoryItem,
    InventoryItem,
    MovementType,
    StockMovement,
    StockStatus,
    UpdateInventoryItem,
)

logger = logging.getLogger(__name__)

COLLECTION = "inventory"
MOVEMENTS = "stockMovements"
BY_NAME = [("name", ASCENDING)]
SELLABLE = ["in_stock", "low_stock"]


def compute_stock_status(quantity: int, min_stock_level: int) -> StockStatus:
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= min_stock_level:
        return "low_stock"
    return "in_stock"


def available_stock(item: InventoryItem) -> int:
    return max(0, item.quantity - (item.reservedQuantity or 0))


class InventoryRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    # ---------- CRUD ----------

    def get_all(self) -> List[InventoryItem]:
        try:
            return [InventoryItem(**d) for d in self.store.find(COLLECTION, sort=BY_NAME)]
        except Exception:
            logger.exception("Error fetching inventory items")
            raise

    def get_by_id(self, id: str) -> Optional[InventoryItem]:
        try:
            doc = self.store.get(COLLECTION, id)
        except Exception:
            logger.exception("Error fetching inventory item %s", id)
            raise
        return InventoryItem(**doc) if doc else None

    def _require(self, id: str) -> InventoryItem:
        item = self.get_by_id(id)
        if item is None:
            raise NotFound("Item not found")
        return item

    def create(self, item: CreateInventoryItem, user_id: str) -> str:
        try:
            now = self.store.server_timestamp()
            data = item.model_dump()
            data["status"] = compute_stock_status(item.quantity, item.minStockLevel)
            data["supplier"] = item.supplier or item.supplierName or ""
            data["reservedQuantity"] = 0
            data["createdAt"] = now
            data["lastUpdated"] = now
            data["updatedBy"] = user_id
            item_id = self.store.add(COLLECTION, data)
            self._record_movement(item_id, item.name, "in", item.quantity, "Initial stock", user_id,
                                  "Item created with initial stock")
        except Exception:
            logger.exception("Error creating inventory item %s", item.name)
            raise
        logger.info("Created inventory item %s (%s) with quantity %s", item_id, item.name, item.quantity)
        return item_id

    def update(self, patch: UpdateInventoryItem, user_id: str) -> None:
        try:
            data = patch.model_dump(exclude_unset=True, exclude={"id"})
            if data.get("quantity") is not None:
                min_stock = data.get("minStockLevel")
                if min_stock is None:
                    min_stock = self._require(patch.id).minStockLevel
                data["status"] = compute_stock_status(data["quantity"], min_stock)
            data["lastUpdated"] = self.store.server_timestamp()
            data["updatedBy"] = user_id
            self.store.update(COLLECTION, patch.id, data)
        except Exception:
            logger.exception("Error updating inventory item %s", patch.id)
            raise

    def delete(self, id: str) -> bool:
        try:
            deleted = self.store.delete(COLLECTION, id)
            self.store.delete_many(MOVEMENTS, {"itemId": id})
            return deleted
        except Exception:
            logger.exception("Error deleting inventory item %s", id)
            raise

    # ---------- Stock movements ----------

    def _record_movement(self, item_id: str, item_name: str, type: MovementType, quantity: int,
                         reason: str, user_id: str, notes: Optional[str] = None) -> str:
        return self.store.add(MOVEMENTS, {
            "itemId": item_id,
            "itemName": item_name,
            "type": type,
            "quantity": abs(quantity),
            "reason": reason,
            "performedBy": user_id,
            "timestamp": self.store.server_timestamp(),
            "notes": notes or "",
        })

    def adjust_stock(self, item_id: str, quantity: int, type: MovementType, reason: str, user_id: str,
                     notes: Optional[str] = None) -> InventoryItem:
        try:
            current = self._require(item_id)
            if type == "in":
                new_quantity = current.quantity + quantity
            elif type == "out":
                new_quantity = current.quantity - quantity
            else:
                new_quantity = quantity
            if new_quantity < 0:
                raise ValidationError("Insufficient stock")

            self.store.update(COLLECTION, item_id, {
                "quantity": new_quantity,
                "status": compute_stock_status(new_quantity, current.minStockLevel),
                "lastUpdated": self.store.server_timestamp(),
                "updatedBy": user_id,
            })
            self._record_movement(item_id, current.name, type, quantity, reason, user_id, notes)
        except Exception:
            logger.exception("Error adjusting stock for %s", item_id)
            raise
        return self._require(item_id)

    def add_stock(self, item_id: str, quantity: int, user_id: str,
                  reason: str = "Stock replenishment from approved request") -> InventoryItem:
        """Increment on the server so concurrent additions are not lost."""
        try:
            doc = self.store.increment(COLLECTION, item_id, "quantity", quantity, {
                "lastUpdated": self.store.server_timestamp(),
                "updatedBy": user_id,
            })
            status = compute_stock_status(doc["quantity"], doc.get("minStockLevel", 0))
            if status != doc.get("status"):
                self.store.update(COLLECTION, item_id, {"status": status})
            self._record_movement(item_id, doc["name"], "in", quantity, reason, user_id)
        except Exception:
            logger.exception("Error adding stock to %s", item_id)
            raise
        return self._require(item_id)

    def get_stock_movements(self, item_id: Optional[str] = None) -> List[StockMovement]:
        filters = {"itemId": item_id} if item_id else None
        try:
            docs = self.store.find(MOVEMENTS, filters, sort=[("timestamp", DESCENDING)])
        except Exception:
            logger.exception("Error fetching stock movements")
            raise
        return [StockMovement(**d) for d in docs]

    # ---------- Catalogue curation ----------

    def publish(self, item_id: str, user_id: str) -> None:
        self.update(UpdateInventoryItem(id=item_id, isPublished=True), user_id)

    def unpublish(self, item_id: str, user_id: str) -> None:
        self.update(UpdateInventoryItem(id=item_id, isPublished=False), user_id)

    def get_published(self) -> List[InventoryItem]:
        try:
            docs = self.store.find(COLLECTION, {"isPublished": True, "status": {"$in": SELLABLE}}, sort=BY_NAME)
        except Exception:
            logger.exception("Error fetching published inventory items")
            raise
        return [InventoryItem(**d) for d in docs]

    def get_unpublished(self) -> List[InventoryItem]:
        try:
            docs = self.store.find(COLLECTION, {"isPublished": False}, sort=BY_NAME)
        except Exception:
            logger.exception("Error fetching unpublished inventory items")
            raise
        return [InventoryItem(**d) for d in docs]

    def subscribe_published(self, callback: Callable[[List[InventoryItem]], None]) -> Unsubscribe:
        return self.store.listen(
            COLLECTION,
            {"isPublished": True, "status": {"$in": SELLABLE}},
            BY_NAME,
            lambda docs: callback([InventoryItem(**d) for d in docs]),
        )

    def search(self, term: str) -> List[InventoryItem]:
        term = term.lower()
        return [
            item for item in self.get_all()
            if term in item.name.lower() or term in item.sku.lower() or term in item.category.lower()
        ]

    def find_existing(self, product_id: str, supplier_id: Optional[str],
                      sku: Optional[str] = None) -> Optional[InventoryItem]:
        """Match a supplier's item by productId first, then by SKU ignoring case."""
        try:
            docs = self.store.find(COLLECTION, {"supplierId": supplier_id})
        except Exception:
            logger.exception("Error finding existing inventory item for %s", product_id)
            raise
        items = [InventoryItem(**d) for d in docs]
        for item in items:
            if item.productId and item.productId == product_id:
                return item
        wanted = (sku or "").strip().lower()
        if wanted:
            for item in items:
                if item.sku and item.sku.strip().lower() == wanted:
                    return item
        return None

    # ---------- Status maintenance ----------

    def refresh_statuses(self) -> int:
        changed = 0
        for item in self.get_all():
            if item.status == "discontinued":
                continue
            status = compute_stock_status(item.quantity, item.minStockLevel)
            if status != item.status:
                self.store.update(COLLECTION, item.id, {
                    "status": status,
                    "lastUpdated": self.store.server_timestamp(),
                })
                changed += 1
        if changed:
            logger.info("Updated status for %d inventory items", changed)
        return changed

    def get_low_stock(self) -> List[InventoryItem]:
        self.refresh_statuses()
        try:
            docs = self.store.find(COLLECTION, {"status": {"$in": ["low_stock", "out_of_stock"]}}, sort=BY_NAME)
        except Exception:
            logger.exception("Error fetching low stock items")
            raise
        return [InventoryItem(**d) for d in docs]

    # ---------- Reservations ----------

    def reserve_stock(self, item_id: str, quantity: int, user_id: str) -> None:
        item = self._require(item_id)
        available = available_stock(item)
        if quantity > available:
            raise ValidationError(f"Insufficient stock. Available: {available}, Requested: {quantity}")
        self.update(UpdateInventoryItem(id=item_id, reservedQuantity=item.reservedQuantity + quantity), user_id)
        self._record_movement(item_id, item.name, "out", quantity, "Stock reserved for order", user_id,
                              "Stock reservation")

    def release_reservation(self, item_id: str, quantity: int, user_id: str) -> None:
        item = self._require(item_id)
        reserved = max(0, item.reservedQuantity - quantity)
        self.update(UpdateInventoryItem(id=item_id, reservedQuantity=reserved), user_id)
        self._record_movement(item_id, item.name, "in", quantity, "Stock reservation released", user_id,
                              "Reservation release")

    def confirm_stock_deduction(self, item_id: str, quantity: int, user_id: str) -> None:
        item = self._require(item_id)
        new_quantity = item.quantity - quantity
        if new_quantity < 0:
            raise ValidationError("Insufficient stock for deduction")
        self.update(UpdateInventoryItem(
            id=item_id,
            quantity=new_quantity,
            reservedQuantity=max(0, item.reservedQuantity - quantity),
        ), user_id)
        self._record_movement(item_id, item.name, "out", quantity, "Order confirmed - stock deducted", user_id,
                              "Confirmed order deduction")
