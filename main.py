import os
import asyncio
import logging
from typing import Optional, Literal
from fastapi import FastAPI, HTTPException, Depends, status, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from starlette.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr
from datetime import datetime, timezone

from auth import AuthService
from config import Settings, configure_logging, get_settings
from customer_orders import CustomerOrderRepository
from database import DocumentStore, get_database
from display_requests import DisplayRequestRepository
from errors import NotFound, PermissionDenied, RemoteFailure, ValidationError, WarehouseError
from inventory import InventoryRepository
from notifications import NotificationRepository
from orders import OrderRepository
from products import ProductRepository
from quantity_requests import QuantityRequestRepository
from schemas import (
    CreateAccessRequest,
    CreateCustomerOrder,
    CreateDisplayRequest,
    CreateInventoryItem,
    CreateOrder,
    CreateProduct,
    CreateQuantityRequest,
    CreateShipment,
    InventoryItemChanges,
    MovementType,
    OrderChanges,
    OrderStatus,
    QuantityResponse,
    Role,
    ShipmentChanges,
    ShipmentStatus,
    ShipmentType,
    UpdateCustomerOrder,
    UpdateInventoryItem,
    UpdateOrder,
    UpdateShipment,
    UpdateUser,
    User,
    UserChanges,
    UserStatus,
)
from shipments import ShipmentRepository
from users import AccessRequestRepository, UserRepository

logger = logging.getLogger(__name__)

STAFF_ROLES = ("admin", "warehouse_staff")

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    RemoteFailure: status.HTTP_502_BAD_GATEWAY,
}


# Request bodies
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class SignupIn(BaseModel):
    name: str
    email: EmailStr
    password: str
    role: Role = "internal_user"


class GoogleLoginIn(BaseModel):
    idToken: str


class StatusPatch(BaseModel):
    status: ShipmentStatus


class OrderStatusPatch(BaseModel):
    status: OrderStatus


class StockAdjustment(BaseModel):
    quantity: int
    type: MovementType
    reason: str
    notes: Optional[str] = None


class ReviewIn(BaseModel):
    status: Literal["accepted", "rejected"]
    rejectionReason: Optional[str] = None


class RejectIn(BaseModel):
    reason: Optional[str] = None


class CancelIn(BaseModel):
    reason: str


class RolePatch(BaseModel):
    role: Role


class UserStatusPatch(BaseModel):
    status: UserStatus


def create_app(store: Optional[DocumentStore] = None, settings: Optional[Settings] = None,
               auth: Optional[AuthService] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    if store is None:
        store = DocumentStore(get_database(settings.database_url, settings.database_name))
    auth = auth or AuthService(store, settings)

    users = UserRepository(store)
    access_requests = AccessRequestRepository(store)
    notifications = NotificationRepository(store)
    shipments = ShipmentRepository(store)
    inventory = InventoryRepository(store)
    products = ProductRepository(store)
    quantity_requests = QuantityRequestRepository(store, inventory, products, notifications)
    display_requests = DisplayRequestRepository(store)
    orders = OrderRepository(store)
    customer_orders = CustomerOrderRepository(store, inventory)

    oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

    app = FastAPI(title="Warehouse API", version="1.0.0")
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WarehouseError)
    async def warehouse_error_handler(request, exc: WarehouseError):
        code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=code, content={"detail": exc.message})

    def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
        try:
            user_id = auth.decode_access_token(token)
        except PermissionDenied:
            raise credentials_exception
        user = users.get_by_id(user_id)
        if not user:
            raise credentials_exception
        return user

    def require_staff(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in STAFF_ROLES:
            raise HTTPException(status.HTTP_403_FORBIDDEN, "Warehouse staff only")
        return current_user

    def require_admin(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role != "admin":
            raise HTTPException(status.HTTP_403_FORBIDDEN, "Admins only")
        return current_user

    def issue_token(user: User) -> Token:
        return Token(access_token=auth.create_access_token({"sub": user.id}))

    # Root
    @app.get("/")
    def read_root():
        return {"message": "Warehouse Backend Running"}

    # Auth routes
    @app.post("/auth/signup")
    def signup(body: SignupIn):
        user = auth.register(body.email, body.password, body.name, body.role)
        return {"id": user.id, "status": user.status}

    @app.post("/auth/login", response_model=Token)
    def login(form_data: OAuth2PasswordRequestForm = Depends()):
        return issue_token(auth.authenticate_password(form_data.username, form_data.password))

    @app.post("/auth/google", response_model=Token)
    def login_google(body: GoogleLoginIn):
        return issue_token(auth.authenticate_google(body.idToken))

    @app.get("/auth/me")
    def me(current_user: User = Depends(get_current_user)):
        return current_user

    # Access requests
    @app.post("/access-requests")
    def create_access_request(body: CreateAccessRequest):
        return {"id": access_requests.create(body)}

    @app.get("/access-requests")
    def list_access_requests(admin: User = Depends(require_admin)):
        return access_requests.get_pending()

    @app.post("/access-requests/{rid}/approve")
    def approve_access_request(rid: str, admin: User = Depends(require_admin)):
        access_requests.approve(rid, admin.id)
        return {"updated": True}

    @app.post("/access-requests/{rid}/reject")
    def reject_access_request(rid: str, body: RejectIn, admin: User = Depends(require_admin)):
        access_requests.reject(rid, admin.id, body.reason)
        return {"updated": True}

    # Shipments
    @app.get("/shipments")
    def list_shipments(type: Optional[ShipmentType] = None, staff: User = Depends(require_staff)):
        items = shipments.get_all()
        if type:
            items = [s for s in items if s.type == type]
        return items

    @app.get("/shipments/stats")
    def shipment_stats(staff: User = Depends(require_staff)):
        return shipments.get_stats()

    @app.post("/shipments")
    def create_shipment(payload: CreateShipment, staff: User = Depends(require_staff)):
        if payload.requestedBy is None:
            payload.requestedBy = staff.id
        return {"id": shipments.create(payload)}

    @app.get("/shipments/{sid}")
    def get_shipment(sid: str, staff: User = Depends(require_staff)):
        shipment = shipments.get_by_id(sid)
        if not shipment:
            raise HTTPException(404, "Shipment not found")
        return shipment

    @app.patch("/shipments/{sid}")
    def update_shipment(sid: str, payload: ShipmentChanges, staff: User = Depends(require_staff)):
        shipments.update(UpdateShipment(id=sid, **payload.model_dump(exclude_unset=True)))
        return {"updated": True}

    @app.patch("/shipments/{sid}/status")
    def patch_shipment_status(sid: str, body: StatusPatch, staff: User = Depends(require_staff)):
        shipments.update_status(sid, body.status)
        return {"updated": True}

    @app.delete("/shipments/{sid}")
    def delete_shipment(sid: str, staff: User = Depends(require_staff)):
        return {"deleted": shipments.delete(sid)}

    # Inventory
    @app.get("/inventory")
    def list_inventory(q: Optional[str] = None, staff: User = Depends(require_staff)):
        return inventory.search(q) if q else inventory.get_all()

    @app.get("/inventory/published")
    def list_published_inventory(current_user: User = Depends(get_current_user)):
        return inventory.get_published()

    @app.get("/inventory/unpublished")
    def list_unpublished_inventory(staff: User = Depends(require_staff)):
        return inventory.get_unpublished()

    @app.get("/inventory/low-stock")
    def list_low_stock(staff: User = Depends(require_staff)):
        return inventory.get_low_stock()

    @app.get("/inventory/movements")
    def list_stock_movements(item_id: Optional[str] = None, staff: User = Depends(require_staff)):
        return inventory.get_stock_movements(item_id)

    @app.post("/inventory")
    def create_inventory_item(payload: CreateInventoryItem, staff: User = Depends(require_staff)):
        return {"id": inventory.create(payload, staff.id)}

    @app.get("/inventory/{iid}")
    def get_inventory_item(iid: str, staff: User = Depends(require_staff)):
        item = inventory.get_by_id(iid)
        if not item:
            raise HTTPException(404, "Inventory item not found")
        return item

    @app.patch("/inventory/{iid}")
    def update_inventory_item(iid: str, payload: InventoryItemChanges, staff: User = Depends(require_staff)):
        inventory.update(UpdateInventoryItem(id=iid, **payload.model_dump(exclude_unset=True)), staff.id)
        return {"updated": True}

    @app.delete("/inventory/{iid}")
    def delete_inventory_item(iid: str, staff: User = Depends(require_staff)):
        return {"deleted": inventory.delete(iid)}

    @app.post("/inventory/{iid}/adjust")
    def adjust_inventory(iid: str, body: StockAdjustment, staff: User = Depends(require_staff)):
        return inventory.adjust_stock(iid, body.quantity, body.type, body.reason, staff.id, body.notes)

    @app.post("/inventory/{iid}/publish")
    def publish_inventory_item(iid: str, staff: User = Depends(require_staff)):
        inventory.publish(iid, staff.id)
        return {"updated": True}

    @app.post("/inventory/{iid}/unpublish")
    def unpublish_inventory_item(iid: str, staff: User = Depends(require_staff)):
        inventory.unpublish(iid, staff.id)
        return {"updated": True}

    # Products
    @app.post("/products")
    def create_product(payload: CreateProduct, current_user: User = Depends(get_current_user)):
        if current_user.role == "supplier" and payload.supplierId != current_user.id:
            raise HTTPException(403, "Suppliers can only add their own products")
        return {"id": products.create(payload)}

    @app.get("/products")
    def list_products(supplier_id: str, current_user: User = Depends(get_current_user)):
        return products.get_by_supplier(supplier_id)

    @app.get("/products/{pid}")
    def get_product(pid: str, current_user: User = Depends(get_current_user)):
        product = products.get_by_id(pid)
        if not product:
            raise HTTPException(404, "Product not found")
        return product

    # Display requests
    @app.post("/display-requests")
    def create_display_request(payload: CreateDisplayRequest, current_user: User = Depends(get_current_user)):
        if current_user.role == "supplier" and payload.supplierId != current_user.id:
            raise HTTPException(403, "Suppliers can only request their own products")
        return {"id": display_requests.create(payload)}

    @app.get("/display-requests")
    def list_display_requests(pending: bool = False, current_user: User = Depends(get_current_user)):
        if current_user.role == "supplier":
            return display_requests.get_by_supplier(current_user.id)
        if current_user.role not in STAFF_ROLES:
            raise HTTPException(403, "Warehouse staff only")
        return display_requests.get_pending() if pending else display_requests.get_all()

    @app.post("/display-requests/{rid}/review")
    def review_display_request(rid: str, body: ReviewIn, staff: User = Depends(require_staff)):
        qr_id = display_requests.review(rid, body.status, staff.id, staff.name, body.rejectionReason)
        return {"quantityRequestId": qr_id}

    @app.delete("/display-requests/{rid}")
    def delete_display_request(rid: str, current_user: User = Depends(get_current_user)):
        display_requests.delete(rid, current_user.id)
        return {"deleted": True}

    # Quantity requests
    @app.post("/quantity-requests")
    def create_quantity_request(payload: CreateQuantityRequest, staff: User = Depends(require_staff)):
        return {"id": quantity_requests.create(payload, staff.id, staff.name)}

    @app.get("/quantity-requests")
    def list_quantity_requests(pending: bool = False, current_user: User = Depends(get_current_user)):
        if current_user.role == "supplier":
            return quantity_requests.get_by_supplier(current_user.id)
        if current_user.role not in STAFF_ROLES:
            raise HTTPException(403, "Warehouse staff only")
        return quantity_requests.get_pending() if pending else quantity_requests.get_all()

    @app.get("/quantity-requests/{rid}")
    def get_quantity_request(rid: str, current_user: User = Depends(get_current_user)):
        request = quantity_requests.get_by_id(rid)
        if not request:
            raise HTTPException(404, "Quantity request not found")
        return request

    @app.post("/quantity-requests/{rid}/respond")
    def respond_quantity_request(rid: str, body: QuantityResponse, current_user: User = Depends(get_current_user)):
        request = quantity_requests.get_by_id(rid)
        if not request:
            raise HTTPException(404, "Quantity request not found")
        if current_user.role != "admin" and request.supplierId != current_user.id:
            raise HTTPException(403, "Only the addressed supplier can respond")
        return quantity_requests.respond(rid, body, current_user.id)

    @app.post("/quantity-requests/{rid}/cancel")
    def cancel_quantity_request(rid: str, staff: User = Depends(require_staff)):
        quantity_requests.cancel(rid)
        return {"updated": True}

    @app.delete("/quantity-requests/{rid}")
    def delete_quantity_request(rid: str, staff: User = Depends(require_staff)):
        quantity_requests.delete(rid, staff.id)
        return {"deleted": True}

    # Supplier orders
    @app.get("/orders")
    def list_orders(order_status: Optional[OrderStatus] = None, supplier_id: Optional[str] = None,
                    staff: User = Depends(require_staff)):
        items = orders.get_by_supplier(supplier_id) if supplier_id else orders.get_all()
        if order_status:
            items = [o for o in items if o.status == order_status]
        return items

    @app.get("/orders/stats")
    def order_stats(staff: User = Depends(require_staff)):
        return orders.get_stats()

    @app.post("/orders")
    def create_order(payload: CreateOrder, staff: User = Depends(require_staff)):
        return {"id": orders.create(payload)}

    @app.get("/orders/{oid}")
    def get_order(oid: str, staff: User = Depends(require_staff)):
        order = orders.get_by_id(oid)
        if not order:
            raise HTTPException(404, "Order not found")
        return order

    @app.patch("/orders/{oid}")
    def update_order(oid: str, payload: OrderChanges, staff: User = Depends(require_staff)):
        orders.update(UpdateOrder(id=oid, **payload.model_dump(exclude_unset=True)))
        return {"updated": True}

    @app.patch("/orders/{oid}/status")
    def patch_order_status(oid: str, body: OrderStatusPatch, staff: User = Depends(require_staff)):
        orders.update_status(oid, body.status)
        return {"updated": True}

    @app.delete("/orders/{oid}")
    def delete_order(oid: str, staff: User = Depends(require_staff)):
        return {"deleted": orders.delete(oid)}

    # Customer orders
    @app.post("/customer-orders")
    def create_customer_order(payload: CreateCustomerOrder, current_user: User = Depends(get_current_user)):
        if current_user.role not in STAFF_ROLES and payload.customerId != current_user.id:
            raise HTTPException(403, "You can only order for yourself")
        return {"id": customer_orders.create(payload)}

    @app.get("/customer-orders")
    def list_customer_orders(pending: bool = False, current_user: User = Depends(get_current_user)):
        if current_user.role not in STAFF_ROLES:
            return customer_orders.get_by_customer(current_user.id)
        return customer_orders.get_pending() if pending else customer_orders.get_all()

    @app.get("/customer-orders/stats")
    def customer_order_stats(staff: User = Depends(require_staff)):
        return customer_orders.get_statistics()

    @app.get("/customer-orders/{oid}")
    def get_customer_order(oid: str, current_user: User = Depends(get_current_user)):
        order = customer_orders.get_by_id(oid)
        if not order or (current_user.role not in STAFF_ROLES and order.customerId != current_user.id):
            raise HTTPException(404, "Order not found")
        return order

    @app.post("/customer-orders/{oid}/accept")
    def accept_customer_order(oid: str, staff: User = Depends(require_staff)):
        customer_orders.accept(oid, staff.id)
        return {"updated": True}

    @app.post("/customer-orders/{oid}/cancel")
    def cancel_customer_order(oid: str, body: CancelIn, current_user: User = Depends(get_current_user)):
        order = customer_orders.get_by_id(oid)
        if not order or (current_user.role not in STAFF_ROLES and order.customerId != current_user.id):
            raise HTTPException(404, "Order not found")
        if current_user.role not in STAFF_ROLES and order.status != "pending":
            raise HTTPException(403, "Only pending orders can be cancelled")
        customer_orders.cancel(oid, body.reason, current_user.id)
        return {"updated": True}

    @app.patch("/customer-orders/{oid}/status")
    def patch_customer_order(oid: str, body: UpdateCustomerOrder, staff: User = Depends(require_staff)):
        customer_orders.update_status(oid, body, staff.id)
        return {"updated": True}

    # Users
    @app.get("/users")
    def list_users(role: Optional[Role] = None, q: Optional[str] = None, admin: User = Depends(require_admin)):
        if q:
            return users.search(q)
        return users.get_by_role(role) if role else users.get_all()

    @app.get("/users/stats")
    def user_stats(admin: User = Depends(require_admin)):
        return users.get_stats()

    @app.patch("/users/{uid}")
    def update_user(uid: str, payload: UserChanges, current_user: User = Depends(get_current_user)):
        if current_user.role != "admin" and current_user.id != uid:
            raise HTTPException(403, "You can only edit your own profile")
        users.update(UpdateUser(id=uid, **payload.model_dump(exclude_unset=True)))
        return {"updated": True}

    @app.patch("/users/{uid}/role")
    def patch_user_role(uid: str, body: RolePatch, admin: User = Depends(require_admin)):
        users.update_role(uid, body.role)
        return {"updated": True}

    @app.patch("/users/{uid}/status")
    def patch_user_status(uid: str, body: UserStatusPatch, admin: User = Depends(require_admin)):
        users.update_status(uid, body.status)
        return {"updated": True}

    @app.delete("/users/{uid}")
    def delete_user(uid: str, admin: User = Depends(require_admin)):
        return {"deleted": users.delete(uid)}

    # Notifications
    @app.get("/notifications")
    def list_notifications(unread: bool = False, current_user: User = Depends(get_current_user)):
        return notifications.get_for_user(current_user.id, unread_only=unread)

    @app.post("/notifications/read-all")
    def mark_all_notifications_read(current_user: User = Depends(get_current_user)):
        return {"updated": notifications.mark_all_read(current_user.id)}

    @app.post("/notifications/{nid}/read")
    def mark_notification_read(nid: str, current_user: User = Depends(get_current_user)):
        notification = notifications.get_by_id(nid)
        if not notification or notification.userId != current_user.id:
            raise HTTPException(404, "Notification not found")
        notifications.mark_read(nid)
        return {"updated": True}

    # Live shipment snapshots via WebSocket
    @app.websocket("/ws/shipments")
    async def shipments_feed(websocket: WebSocket, token: str = ""):
        try:
            user = await run_in_threadpool(lambda: users.get_by_id(auth.decode_access_token(token)))
        except PermissionDenied:
            user = None
        if user is None or user.role not in STAFF_ROLES:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def push(items):
            snapshot = [s.model_dump(mode="json") for s in items]
            loop.call_soon_threadsafe(queue.put_nowait, snapshot)

        async def pump():
            while True:
                snapshot = await queue.get()
                await websocket.send_json({
                    "type": "shipments",
                    "data": snapshot,
                    "ts": datetime.now(timezone.utc).isoformat(),
                })

        # the first snapshot is read from Mongo, so keep it off the event loop
        unsubscribe = await run_in_threadpool(shipments.subscribe, push)
        sender = asyncio.create_task(pump())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            sender.cancel()
            unsubscribe()

    # Database diagnostics
    @app.get("/test")
    def database_diagnostics():
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "database_name": store.name,
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            collections = store.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except RemoteFailure as e:
            response["database"] = f"⚠️  Error: {str(e)[:80]}"
        return response

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host="0.0.0.0", port=settings.port)
