import logging
from typing import List, Literal, Optional

from pymongo import DESCENDING

from database import DocumentStore
from errors import NotFound, PermissionDenied
from quantity_requests import COLLECTION as QUANTITY_REQUESTS
from schemas import CreateDisplayRequest, DisplayRequest

logger = logging.getLogger(__name__)

COLLECTION = "displayRequests"
NEWEST_FIRST = [("requestedAt", DESCENDING)]


class DisplayRequestRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, data: CreateDisplayRequest) -> str:
        now = self.store.server_timestamp()
        doc = data.model_dump()
        doc.update({"status": "pending", "requestedAt": now, "createdAt": now, "updatedAt": now})
        try:
            return self.store.add(COLLECTION, doc)
        except Exception:
            logger.exception("Error creating display request for %s", data.productId)
            raise

    def _query(self, filters: Optional[dict] = None) -> List[DisplayRequest]:
        try:
            docs = self.store.find(COLLECTION, filters, sort=NEWEST_FIRST)
        except Exception:
            logger.exception("Error fetching display requests %s", filters)
            raise
        return [DisplayRequest(**d) for d in docs]

    def get_all(self) -> List[DisplayRequest]:
        return self._query()

    def get_by_supplier(self, supplier_id: str) -> List[DisplayRequest]:
        return self._query({"supplierId": supplier_id})

    def get_pending(self) -> List[DisplayRequest]:
        return self._query({"status": "pending"})

    def get_by_id(self, request_id: str) -> Optional[DisplayRequest]:
        doc = self.store.get(COLLECTION, request_id)
        return DisplayRequest(**doc) if doc else None

    def review(self, request_id: str, status: Literal["accepted", "rejected"], reviewer_id: str,
               reviewer_name: str, rejection_reason: Optional[str] = None) -> Optional[str]:
        """
        Accept or reject a pending display request. Accepting opens a pending
        quantity request for one unit and links it back; its id is returned.
        """
        request = self.get_by_id(request_id)
        if request is None or request.status != "pending":
            raise NotFound("Display request not found or already reviewed")

        now = self.store.server_timestamp()
        patch = {
            "status": status,
            "reviewedAt": now,
            "reviewedBy": reviewer_id,
            "reviewerName": reviewer_name,
            "rejectionReason": rejection_reason,
            "updatedAt": now,
        }
        quantity_request_id = None
        try:
            if status == "accepted":
                quantity_request_id = self.store.add(QUANTITY_REQUESTS, {
                    "displayRequestId": request_id,
                    "productId": request.productId,
                    "productName": request.productName,
                    "supplierId": request.supplierId,
                    "supplierName": request.supplierName,
                    "supplierEmail": request.supplierEmail,
                    "requestedBy": reviewer_id,
                    "requesterName": reviewer_name,
                    "requestedQuantity": 1,
                    "status": "pending",
                    "requestedAt": now,
                    "createdAt": now,
                    "updatedAt": now,
                })
                patch["quantityRequestId"] = quantity_request_id
            self.store.update(COLLECTION, request_id, patch, expect={"status": "pending"})
        except Exception:
            logger.exception("Error reviewing display request %s", request_id)
            raise
        return quantity_request_id

    def delete(self, request_id: str, supplier_id: str) -> None:
        request = self.get_by_id(request_id)
        if request is None:
            raise NotFound("Display request not found")
        if request.supplierId != supplier_id:
            raise PermissionDenied("You can only delete your own display requests")
        self.store.delete(COLLECTION, request_id)
