"""
Supplier quantity requests and the approval workflow.

A warehouse user asks a supplier for a quantity of a product. The supplier
answers with approved_full, approved_partial or rejected. An approval turns
into stock: the matching inventory item is topped up, or a new unpublished
item is created with thresholds derived from the approved quantity.

The request update and the inventory write are two separate document writes.
If the inventory write fails the request stays resolved; nothing rolls it back.
"""
import logging
from typing import Callable, List, Optional

from pymongo import DESCENDING

from database import DocumentStore, Unsubscribe
from errors import NotFound, PermissionDenied, ValidationError
from inventory import InventoryRepository
from notifications import NotificationRepository
from products import ProductRepository
from schemas import CreateInventoryItem, CreateQuantityRequest, QuantityRequest, QuantityResponse

logger = logging.getLogger(__name__)

COLLECTION = "quantityRequests"
NEWEST_FIRST = [("requestedAt", DESCENDING)]

APPROVED = ("approved_full", "approved_partial")
DEFAULT_LOCATION = "Main Warehouse"
DEFAULT_CATEGORY = "Uncategorized"


def stock_thresholds(quantity: int):
    """(min, max) stock levels for an item first stocked with quantity units."""
    return max(1, quantity // 10), quantity * 2


class QuantityRequestRepository:
    def __init__(self, store: DocumentStore, inventory: InventoryRepository,
                 products: Optional[ProductRepository] = None,
                 notifications: Optional[NotificationRepository] = None):
        self.store = store
        self.inventory = inventory
        self.products = products
        self.notifications = notifications

    # ---------- Queries ----------

    def _query(self, filters: Optional[dict] = None) -> List[QuantityRequest]:
        try:
            docs = self.store.find(COLLECTION, filters, sort=NEWEST_FIRST)
        except Exception:
            logger.exception("Error fetching quantity requests %s", filters)
            raise
        return [QuantityRequest(**d) for d in docs]

    def get_all(self) -> List[QuantityRequest]:
        return self._query()

    def get_by_supplier(self, supplier_id: str) -> List[QuantityRequest]:
        return self._query({"supplierId": supplier_id})

    def get_by_requester(self, requester_id: str) -> List[QuantityRequest]:
        return self._query({"requestedBy": requester_id})

    def get_pending(self) -> List[QuantityRequest]:
        return self._query({"status": "pending"})

    def get_by_id(self, request_id: str) -> Optional[QuantityRequest]:
        try:
            doc = self.store.get(COLLECTION, request_id)
        except Exception:
            logger.exception("Error fetching quantity request %s", request_id)
            raise
        return QuantityRequest(**doc) if doc else None

    def _find_pending(self, product_id: str, supplier_id: Optional[str] = None) -> Optional[QuantityRequest]:
        filters = {"productId": product_id, "status": "pending"}
        if supplier_id:
            filters["supplierId"] = supplier_id
        docs = self.store.find(COLLECTION, filters, sort=NEWEST_FIRST, limit=1)
        return QuantityRequest(**docs[0]) if docs else None

    def has_active(self, product_id: str, supplier_id: Optional[str] = None) -> bool:
        return self._find_pending(product_id, supplier_id) is not None

    # ---------- Creation ----------

    def create(self, data: CreateQuantityRequest, user_id: str, user_name: str) -> str:
        """
        Open a request, or fold the quantity into the pending request that
        already exists for the same product and supplier.
        """
        if data.requestedQuantity <= 0:
            raise ValidationError("Requested quantity must be greater than zero")

        try:
            existing = self._find_pending(data.productId, data.supplierId)
            if existing:
                return self._combine(existing, data, user_id)

            now = self.store.server_timestamp()
            doc = data.model_dump()
            doc.update({
                "requestedBy": user_id,
                "requesterName": user_name,
                "status": "pending",
                "requestedAt": now,
                "createdAt": now,
                "updatedAt": now,
            })
            return self.store.add(COLLECTION, doc)
        except Exception:
            logger.exception("Error creating quantity request for %s", data.productId)
            raise

    def _combine(self, existing: QuantityRequest, data: CreateQuantityRequest, user_id: str) -> str:
        combined = existing.requestedQuantity + data.requestedQuantity
        self.store.update(COLLECTION, existing.id, {
            "requestedQuantity": combined,
            "updatedAt": self.store.server_timestamp(),
            "notes": f"Combined request: Original {existing.requestedQuantity} + "
                     f"New {data.requestedQuantity} = {combined} units",
        })
        logger.info("Combined quantity request %s into %s units", existing.id, combined)

        if self.notifications:
            metadata = {
                "requestId": existing.id,
                "productName": data.productName,
                "totalQuantity": combined,
            }
            self.notifications.create(
                existing.requestedBy,
                "Quantity Request Combined",
                f"Your quantity request for {data.productName} was combined with another request. "
                f"Total quantity: {combined} units",
                action_url="/dashboard",
                metadata=dict(metadata, originalQuantity=existing.requestedQuantity,
                              addedQuantity=data.requestedQuantity),
            )
            if user_id != existing.requestedBy:
                self.notifications.create(
                    user_id,
                    "Quantity Request Combined",
                    f"Your quantity request for {data.productName} was combined with an existing request. "
                    f"Total quantity: {combined} units",
                    action_url="/dashboard",
                    metadata=dict(metadata, yourQuantity=data.requestedQuantity,
                                  existingQuantity=existing.requestedQuantity),
                )
        return existing.id

    # ---------- Approval workflow ----------

    def respond(self, request_id: str, response: QuantityResponse, responding_user_id: str) -> QuantityRequest:
        request = self.get_by_id(request_id)
        if request is None:
            raise NotFound("Quantity request not found")
        if request.status != "pending":
            raise NotFound(f"Quantity request already resolved ({request.status})")

        approved_quantity = self._approved_quantity(request, response)

        now = self.store.server_timestamp()
        try:
            self.store.update(COLLECTION, request_id, {
                "status": response.status,
                "approvedQuantity": approved_quantity,
                "rejectionReason": response.rejectionReason,
                "notes": response.notes,
                "respondedBy": responding_user_id,
                "respondedAt": now,
                "updatedAt": now,
            }, expect={"status": "pending"})
        except NotFound:
            raise NotFound("Quantity request already resolved")
        except Exception:
            logger.exception("Error responding to quantity request %s", request_id)
            raise

        if approved_quantity:
            logger.info("Quantity request %s %s for %s units", request_id, response.status, approved_quantity)
            self._stock_approved(request, approved_quantity, responding_user_id)
        return self.get_by_id(request_id)

    def _approved_quantity(self, request: QuantityRequest, response: QuantityResponse) -> Optional[int]:
        if response.status == "rejected":
            return None
        if response.status == "approved_partial":
            qty = response.approvedQuantity
            if qty is None:
                raise ValidationError("approvedQuantity is required for a partial approval")
            if qty <= 0:
                raise ValidationError("approvedQuantity must be greater than zero")
            if qty > request.requestedQuantity:
                raise ValidationError(
                    f"approvedQuantity {qty} exceeds requested quantity {request.requestedQuantity}"
                )
            return qty
        # approved_full
        if request.requestedQuantity <= 0:
            raise ValidationError("Requested quantity must be greater than zero")
        if response.approvedQuantity is not None and response.approvedQuantity != request.requestedQuantity:
            raise ValidationError("A full approval must approve the requested quantity")
        return request.requestedQuantity

    def _stock_approved(self, request: QuantityRequest, quantity: int, user_id: str):
        product = None
        if self.products:
            try:
                product = self.products.get_by_id(request.productId)
            except Exception:
                logger.warning("Could not fetch product %s, using defaults", request.productId, exc_info=True)

        sku = (product.sku if product and product.sku else None) or request.productId
        try:
            existing = self.inventory.find_existing(request.productId, request.supplierId, sku)
            if existing:
                self.inventory.add_stock(
                    existing.id, quantity, user_id,
                    f"Stock replenishment from approved quantity request (Request ID: {request.id})",
                )
                logger.info("Added %s units to inventory item %s", quantity, existing.id)
                return

            min_stock, max_stock = stock_thresholds(quantity)
            item = CreateInventoryItem(
                productId=request.productId,
                name=request.productName,
                description=(product.description if product else None) or "",
                sku=sku,
                category=(product.category if product else None) or DEFAULT_CATEGORY,
                quantity=quantity,
                minStockLevel=min_stock,
                maxStockLevel=max_stock,
                unitPrice=product.price if product else 0,
                supplierId=request.supplierId,
                supplierName=request.supplierName,
                imageUrl=product.imageUrl if product else None,
                location=DEFAULT_LOCATION,
                isPublished=False,
            )
            self.inventory.create(item, user_id)
        except Exception:
            logger.exception("Inventory write failed after resolving quantity request %s", request.id)
            raise

    # ---------- Cancellation ----------

    def cancel(self, request_id: str) -> None:
        try:
            self.store.update(COLLECTION, request_id, {
                "status": "cancelled",
                "updatedAt": self.store.server_timestamp(),
            }, expect={"status": "pending"})
        except NotFound:
            raise NotFound("Quantity request not found or not pending")

    def delete(self, request_id: str, requester_id: str) -> None:
        request = self.get_by_id(request_id)
        if request is None:
            raise NotFound("Quantity request not found")
        if request.requestedBy != requester_id:
            raise PermissionDenied("You can only delete your own requests")
        self.store.delete(COLLECTION, request_id)

    # ---------- Subscriptions ----------

    def _listen(self, field: str, value: str, callback: Callable[[List[QuantityRequest]], None]) -> Unsubscribe:
        if not value:
            logger.warning("Invalid %s for quantity request subscription: %r", field, value)
            callback([])
            return lambda: None
        return self.store.listen(
            COLLECTION, {field: value}, NEWEST_FIRST,
            lambda docs: callback([QuantityRequest(**d) for d in docs]),
        )

    def subscribe_by_supplier(self, supplier_id: str, callback) -> Unsubscribe:
        return self._listen("supplierId", supplier_id, callback)

    def subscribe_by_requester(self, requester_id: str, callback) -> Unsubscribe:
        return self._listen("requestedBy", requester_id, callback)
