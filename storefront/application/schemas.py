from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from storefront.domain.models import OrderStatus, PaymentMethod

class Principal(BaseModel):
    """The caller, as identified by its bearer token."""
    user_id: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_guest(self) -> bool:
        return self.role == "guest"

class ShippingAddress(BaseModel):
    full_name: str
    street: str
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str
    phone: Optional[str] = None

class OrderItemCreate(BaseModel):
    product_id: str
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None

class PricingInput(BaseModel):
    """Client-computed totals; checked against the catalog snapshot."""
    items_price: Decimal
    shipping_price: Decimal = Decimal("0")
    tax_price: Decimal = Decimal("0")
    total_price: Decimal

class OrderCreate(BaseModel):
    items: list[OrderItemCreate]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.CARD
    # Derived from SHIPPING_PRICE / TAX_RATE when omitted
    pricing: Optional[PricingInput] = None

class OrderItemRead(BaseModel):
    id: int
    product_id: str
    title: str
    image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int
    unit_price: float
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: int
    order_number: Optional[str] = None
    user_id: str
    user_email: Optional[str] = None
    items: list[OrderItemRead]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    items_price: float
    shipping_price: float
    tax_price: float
    total_price: float
    is_paid: bool
    paid_at: Optional[datetime] = None
    payment_id: Optional[str] = None
    status: OrderStatus
    is_delivered: bool
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    class Config:
        from_attributes = True

class Pagination(BaseModel):
    page: int
    limit: int
    total_orders: int
    total_pages: int

class OrderListResponse(BaseModel):
    orders: list[OrderRead]
    pagination: Pagination

class StatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None

class PaymentInitiate(BaseModel):
    amount: int = Field(..., description="Amount in minor currency units (paise)")
    receipt: str = Field(..., min_length=1, max_length=40)
    notes: dict[str, Any] = Field(default_factory=dict)
    order_id: Optional[int] = None

class PaymentIntentRead(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: str

class PaymentVerify(BaseModel):
    order_id: int
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str

class PaymentVerificationRead(BaseModel):
    verified: bool
    order: OrderRead

class OrderSummary(BaseModel):
    today_orders: int
    today_revenue: float
    week_orders: int
    week_revenue: float
    month_orders: int
    month_revenue: float
    total_orders: int
    total_revenue: float

class StatusCount(BaseModel):
    status: OrderStatus
    count: int

class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str

class PushSubscriptionCreate(BaseModel):
    endpoint: str
    keys: PushSubscriptionKeys
