import logging
from typing import Callable, List, Optional

from pymongo import DESCENDING

from database import DocumentStore, Unsubscribe
from schemas import CreateShipment, Shipment, ShipmentStatus, ShipmentType, UpdateShipment

logger = logging.getLogger(__name__)

COLLECTION = "shipments"
NEWEST_FIRST = [("createdAt", DESCENDING)]

INITIAL_STATUS = {"incoming": "pending", "outgoing": "processing"}


class ShipmentRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get_all(self) -> List[Shipment]:
        try:
            return [Shipment(**d) for d in self.store.find(COLLECTION, sort=NEWEST_FIRST)]
        except Exception:
            logger.exception("Error fetching shipments")
            raise

    def get_by_id(self, id: str) -> Optional[Shipment]:
        try:
            doc = self.store.get(COLLECTION, id)
        except Exception:
            logger.exception("Error fetching shipment %s", id)
            raise
        return Shipment(**doc) if doc else None

    def create(self, shipment: CreateShipment) -> str:
        try:
            now = self.store.server_timestamp()
            data = shipment.model_dump()
            data["status"] = INITIAL_STATUS[shipment.type]
            data["createdAt"] = now
            data["updatedAt"] = now
            return self.store.add(COLLECTION, data)
        except Exception:
            logger.exception("Error creating shipment %s", shipment.trackingNumber)
            raise

    def update(self, patch: UpdateShipment) -> None:
        try:
            data = patch.model_dump(exclude_unset=True, exclude={"id"})
            data["updatedAt"] = self.store.server_timestamp()
            self.store.update(COLLECTION, patch.id, data)
        except Exception:
            logger.exception("Error updating shipment %s", patch.id)
            raise

    def update_status(self, id: str, status: ShipmentStatus) -> None:
        try:
            self.store.update(COLLECTION, id, {"status": status, "updatedAt": self.store.server_timestamp()})
        except Exception:
            logger.exception("Error updating shipment status %s", id)
            raise

    def delete(self, id: str) -> bool:
        try:
            return self.store.delete(COLLECTION, id)
        except Exception:
            logger.exception("Error deleting shipment %s", id)
            raise

    # Real-time subscriptions

    def subscribe(self, callback: Callable[[List[Shipment]], None]) -> Unsubscribe:
        return self.store.listen(
            COLLECTION, None, NEWEST_FIRST, lambda docs: callback([Shipment(**d) for d in docs])
        )

    def subscribe_by_type(self, type: ShipmentType, callback: Callable[[List[Shipment]], None]) -> Unsubscribe:
        return self.store.listen(
            COLLECTION, {"type": type}, NEWEST_FIRST, lambda docs: callback([Shipment(**d) for d in docs])
        )

    # Analytics

    def get_stats(self) -> dict:
        try:
            shipments = self.get_all()
        except Exception:
            logger.exception("Error calculating shipment stats")
            raise
        return {
            "total": len(shipments),
            "incoming": sum(1 for s in shipments if s.type == "incoming"),
            "outgoing": sum(1 for s in shipments if s.type == "outgoing"),
            "pending": sum(1 for s in shipments if s.status == "pending"),
            "inTransit": sum(1 for s in shipments if s.status == "in_transit"),
            "totalValue": sum(s.value for s in shipments),
        }
