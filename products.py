import logging
from typing import List, Optional

from pymongo import ASCENDING

from database import DocumentStore
from schemas import CreateProduct, Product

logger = logging.getLogger(__name__)

COLLECTION = "products"


class ProductRepository:
    """Supplier catalogue entries."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, product: CreateProduct) -> str:
        now = self.store.server_timestamp()
        data = product.model_dump()
        data["createdAt"] = now
        data["updatedAt"] = now
        try:
            return self.store.add(COLLECTION, data)
        except Exception:
            logger.exception("Error creating product %s", product.name)
            raise

    def get_by_id(self, id: str) -> Optional[Product]:
        doc = self.store.get(COLLECTION, id)
        return Product(**doc) if doc else None

    def get_by_supplier(self, supplier_id: str) -> List[Product]:
        docs = self.store.find(COLLECTION, {"supplierId": supplier_id}, sort=[("name", ASCENDING)])
        return [Product(**d) for d in docs]

    def update(self, id: str, patch: dict) -> None:
        patch = dict(patch)
        patch["updatedAt"] = self.store.server_timestamp()
        try:
            self.store.update(COLLECTION, id, patch)
        except Exception:
            logger.exception("Error updating product %s", id)
            raise

    def delete(self, id: str) -> bool:
        return self.store.delete(COLLECTION, id)
