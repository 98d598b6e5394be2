import logging
from typing import List, Optional

from pymongo import ASCENDING, DESCENDING

from database import DocumentStore
from errors import NotFound
from schemas import AccessRequest, CreateAccessRequest, Role, UpdateUser, User, UserStatus

logger = logging.getLogger(__name__)

COLLECTION = "users"
ACCESS_REQUESTS = "accessRequests"
ROLES = ("admin", "warehouse_staff", "supplier", "internal_user")


class UserRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get_all(self) -> List[User]:
        return [User(**d) for d in self.store.find(COLLECTION, sort=[("name", ASCENDING)])]

    def get_by_id(self, id: str) -> Optional[User]:
        doc = self.store.get(COLLECTION, id)
        return User(**doc) if doc else None

    def get_by_email(self, email: str) -> Optional[User]:
        doc = self.store.find_one(COLLECTION, {"email": email})
        return User(**doc) if doc else None

    def get_by_role(self, role: Role) -> List[User]:
        return [User(**d) for d in self.store.find(COLLECTION, {"role": role}, sort=[("name", ASCENDING)])]

    def update(self, patch: UpdateUser) -> None:
        data = patch.model_dump(exclude_unset=True, exclude={"id"})
        data["updatedAt"] = self.store.server_timestamp()
        try:
            self.store.update(COLLECTION, patch.id, data)
        except Exception:
            logger.exception("Error updating user %s", patch.id)
            raise

    def update_role(self, user_id: str, role: Role) -> None:
        self.store.update(COLLECTION, user_id, {"role": role, "updatedAt": self.store.server_timestamp()})
        logger.info("User %s role changed to %s", user_id, role)

    def update_status(self, user_id: str, status: UserStatus) -> None:
        self.store.update(COLLECTION, user_id, {"status": status, "updatedAt": self.store.server_timestamp()})
        logger.info("User %s status changed to %s", user_id, status)

    def delete(self, user_id: str) -> bool:
        return self.store.delete(COLLECTION, user_id)

    def search(self, term: str) -> List[User]:
        term = term.lower()
        return [u for u in self.get_all() if term in u.name.lower() or term in u.email.lower()]

    def get_stats(self) -> dict:
        users = self.get_all()
        stats = {"total": len(users)}
        for role in ROLES:
            stats[role] = sum(1 for u in users if u.role == role)
        return stats


class AccessRequestRepository:
    """Requests for an account, reviewed by an admin before first sign-in."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, data: CreateAccessRequest) -> str:
        doc = data.model_dump()
        doc.update({"status": "pending", "submittedAt": self.store.server_timestamp()})
        return self.store.add(ACCESS_REQUESTS, doc)

    def get_pending(self) -> List[AccessRequest]:
        docs = self.store.find(ACCESS_REQUESTS, {"status": "pending"}, sort=[("submittedAt", DESCENDING)])
        return [AccessRequest(**d) for d in docs]

    def _review(self, request_id: str, status: UserStatus, reviewer_id: str, reason: Optional[str] = None):
        try:
            self.store.update(ACCESS_REQUESTS, request_id, {
                "status": status,
                "reviewedAt": self.store.server_timestamp(),
                "reviewedBy": reviewer_id,
                "rejectionReason": reason,
            }, expect={"status": "pending"})
        except NotFound:
            raise NotFound("Access request not found or already reviewed")

    def approve(self, request_id: str, reviewer_id: str) -> None:
        self._review(request_id, "approved", reviewer_id)

    def reject(self, request_id: str, reviewer_id: str, reason: Optional[str] = None) -> None:
        self._review(request_id, "rejected", reviewer_id, reason)

    def find_approved(self, email: str) -> Optional[AccessRequest]:
        docs = self.store.find(ACCESS_REQUESTS, {"email": email, "status": "approved"},
                               sort=[("reviewedAt", DESCENDING)], limit=1)
        return AccessRequest(**docs[0]) if docs else None
