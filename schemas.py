"""
Database Schemas for the Warehouse backend

Each entity model mirrors one document collection. Field names follow the
documents as stored (camelCase). Input models (Create*/Update*) describe what
callers may send; the store adds ids and server timestamps.

Collections:
- users, accessRequests
- shipments
- inventory, stockMovements
- products
- displayRequests, quantityRequests
- orders, customerOrders
- notifications
"""
from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime

Role = Literal["admin", "warehouse_staff", "supplier", "internal_user"]
UserStatus = Literal["pending", "approved", "rejected"]

ShipmentType = Literal["incoming", "outgoing"]
ShipmentStatus = Literal[
    "pending", "in_transit", "arriving_today", "ready_to_ship", "processing", "delivered", "cancelled"
]

StockStatus = Literal["in_stock", "low_stock", "out_of_stock", "discontinued"]
MovementType = Literal["in", "out", "adjustment"]

DisplayRequestStatus = Literal["pending", "accepted", "rejected"]
QuantityRequestStatus = Literal["pending", "approved_full", "approved_partial", "rejected", "cancelled"]
QuantityResponseStatus = Literal["approved_full", "approved_partial", "rejected"]

OrderStatus = Literal["pending", "approved", "shipped", "delivered", "cancelled"]
CustomerOrderStatus = Literal["pending", "accepted", "cancelled", "shipped", "delivered"]

NotificationType = Literal["info", "success", "warning", "error"]


# ---------- Users ----------

class User(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: Role = "internal_user"
    status: UserStatus = "pending"
    department: Optional[str] = None
    profilePicture: Optional[str] = None
    avatar: Optional[str] = None
    displayName: Optional[str] = None
    isEmailVerified: Optional[bool] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    companyName: Optional[str] = None
    contactPerson: Optional[str] = None
    businessType: Optional[str] = None
    website: Optional[str] = None
    taxId: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    lastLoginAt: Optional[datetime] = None


class UserChanges(BaseModel):
    name: Optional[str] = None
    department: Optional[str] = None
    profilePicture: Optional[str] = None
    displayName: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    companyName: Optional[str] = None
    contactPerson: Optional[str] = None
    businessType: Optional[str] = None
    website: Optional[str] = None
    taxId: Optional[str] = None


class UpdateUser(UserChanges):
    id: str


class CreateAccessRequest(BaseModel):
    name: str
    email: EmailStr
    requestedRole: Role
    department: Optional[str] = None
    reason: Optional[str] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contactPerson: Optional[str] = None
    businessType: Optional[str] = None
    website: Optional[str] = None
    taxId: Optional[str] = None


class AccessRequest(CreateAccessRequest):
    id: str
    status: UserStatus = "pending"
    submittedAt: Optional[datetime] = None
    reviewedAt: Optional[datetime] = None
    reviewedBy: Optional[str] = None
    rejectionReason: Optional[str] = None


# ---------- Shipments ----------

class CreateShipment(BaseModel):
    type: ShipmentType
    trackingNumber: str
    supplier: Optional[str] = None
    destination: Optional[str] = None
    items: int = Field(0, ge=0, description="Number of items in the shipment")
    eta: Optional[datetime] = None
    requestedBy: Optional[str] = None
    value: float = Field(0, ge=0, description="Monetary value")
    notes: Optional[str] = None


class ShipmentChanges(BaseModel):
    type: Optional[ShipmentType] = None
    trackingNumber: Optional[str] = None
    supplier: Optional[str] = None
    destination: Optional[str] = None
    items: Optional[int] = Field(None, ge=0)
    eta: Optional[datetime] = None
    requestedBy: Optional[str] = None
    value: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    status: Optional[ShipmentStatus] = None
    actualDelivery: Optional[datetime] = None


class UpdateShipment(ShipmentChanges):
    id: str


class Shipment(CreateShipment):
    id: str
    status: ShipmentStatus
    actualDelivery: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------- Inventory ----------

class CreateInventoryItem(BaseModel):
    name: str
    description: str = ""
    sku: str
    category: str = "Uncategorized"
    quantity: int = 0
    minStockLevel: int = Field(0, ge=0)
    maxStockLevel: int = Field(0, ge=0)
    unitPrice: float = Field(0, ge=0)
    supplier: Optional[str] = None
    location: str = "Main Warehouse"
    productId: Optional[str] = None
    supplierId: Optional[str] = None
    supplierName: Optional[str] = None
    imageUrl: Optional[str] = None
    imagePath: Optional[str] = None
    isPublished: bool = False


class InventoryItemChanges(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[int] = None
    minStockLevel: Optional[int] = Field(None, ge=0)
    maxStockLevel: Optional[int] = Field(None, ge=0)
    unitPrice: Optional[float] = Field(None, ge=0)
    supplier: Optional[str] = None
    location: Optional[str] = None
    imageUrl: Optional[str] = None
    imagePath: Optional[str] = None
    status: Optional[StockStatus] = None
    isPublished: Optional[bool] = None
    reservedQuantity: Optional[int] = Field(None, ge=0)


class UpdateInventoryItem(InventoryItemChanges):
    id: str


class InventoryItem(CreateInventoryItem):
    id: str
    status: StockStatus
    reservedQuantity: int = 0
    createdAt: Optional[datetime] = None
    lastUpdated: Optional[datetime] = None
    updatedBy: Optional[str] = None


class StockMovement(BaseModel):
    id: str
    itemId: str
    itemName: str
    type: MovementType
    quantity: int
    reason: str
    performedBy: str
    timestamp: Optional[datetime] = None
    notes: Optional[str] = None


# ---------- Products ----------

class CreateProduct(BaseModel):
    name: str
    description: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(0, ge=0)
    imageUrl: Optional[str] = None
    supplierId: str
    supplierName: str


class Product(CreateProduct):
    id: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------- Supplier requests ----------

class CreateDisplayRequest(BaseModel):
    productId: str
    productName: str
    productDescription: Optional[str] = None
    productSku: Optional[str] = None
    productPrice: float = Field(..., ge=0)
    productImageUrl: Optional[str] = None
    supplierId: str
    supplierName: str
    supplierEmail: EmailStr


class DisplayRequest(CreateDisplayRequest):
    id: str
    status: DisplayRequestStatus = "pending"
    requestedAt: Optional[datetime] = None
    reviewedAt: Optional[datetime] = None
    reviewedBy: Optional[str] = None
    reviewerName: Optional[str] = None
    rejectionReason: Optional[str] = None
    quantityRequestId: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class CreateQuantityRequest(BaseModel):
    productId: str
    productName: str
    supplierId: str
    supplierName: str
    supplierEmail: EmailStr
    requestedQuantity: int
    displayRequestId: Optional[str] = None
    notes: Optional[str] = None


class QuantityRequest(CreateQuantityRequest):
    id: str
    requestedBy: str
    requesterName: str
    status: QuantityRequestStatus = "pending"
    requestedAt: Optional[datetime] = None
    respondedAt: Optional[datetime] = None
    respondedBy: Optional[str] = None
    approvedQuantity: Optional[int] = None
    rejectionReason: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class QuantityResponse(BaseModel):
    status: QuantityResponseStatus
    approvedQuantity: Optional[int] = None
    rejectionReason: Optional[str] = None
    notes: Optional[str] = None


# ---------- Supplier orders ----------

class OrderItem(BaseModel):
    itemId: str
    itemName: str
    quantity: int = Field(..., gt=0)
    unitPrice: float = Field(..., ge=0)
    totalPrice: float = Field(..., ge=0)


class CreateOrder(BaseModel):
    supplierId: str
    supplierName: str
    items: List[OrderItem]
    expectedDelivery: Optional[datetime] = None
    notes: Optional[str] = None
    requestedBy: str


class OrderChanges(BaseModel):
    supplierId: Optional[str] = None
    supplierName: Optional[str] = None
    items: Optional[List[OrderItem]] = None
    expectedDelivery: Optional[datetime] = None
    notes: Optional[str] = None
    status: Optional[OrderStatus] = None
    approvedBy: Optional[str] = None
    actualDelivery: Optional[datetime] = None


class UpdateOrder(OrderChanges):
    id: str


class Order(CreateOrder):
    id: str
    orderNumber: str
    status: OrderStatus = "pending"
    totalAmount: float = 0
    orderDate: Optional[datetime] = None
    actualDelivery: Optional[datetime] = None
    approvedBy: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------- Customer orders ----------

class CustomerOrderLine(BaseModel):
    itemId: str
    itemName: str
    itemSku: str
    quantity: int = Field(..., gt=0)
    unitPrice: float = Field(..., ge=0)
    supplierId: Optional[str] = None
    supplierName: Optional[str] = None


class CustomerOrderItem(CustomerOrderLine):
    totalPrice: float


class CreateCustomerOrder(BaseModel):
    customerId: str
    customerName: str
    customerEmail: EmailStr
    items: List[CustomerOrderLine] = Field(..., min_length=1)
    shippingAddress: Optional[str] = None
    notes: Optional[str] = None


class UpdateCustomerOrder(BaseModel):
    status: Optional[CustomerOrderStatus] = None
    cancellationReason: Optional[str] = None
    notes: Optional[str] = None
    shippedDate: Optional[datetime] = None
    deliveredDate: Optional[datetime] = None


class CustomerOrder(BaseModel):
    id: str
    orderNumber: str
    customerId: str
    customerName: str
    customerEmail: EmailStr
    items: List[CustomerOrderItem]
    status: CustomerOrderStatus = "pending"
    totalAmount: float = 0
    orderDate: Optional[datetime] = None
    acceptedDate: Optional[datetime] = None
    shippedDate: Optional[datetime] = None
    deliveredDate: Optional[datetime] = None
    cancellationReason: Optional[str] = None
    notes: Optional[str] = None
    shippingAddress: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ---------- Notifications ----------

class Notification(BaseModel):
    id: str
    userId: str
    title: str
    message: str
    type: NotificationType = "info"
    read: bool = False
    actionUrl: Optional[str] = None
    metadata: Dict[str, Any] = {}
    createdAt: Optional[datetime] = None
