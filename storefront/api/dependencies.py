from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from storefront.application.notifications import NotificationFanout
from storefront.application.service import OrderService
from storefront.infrastructure.catalog import ProductCatalog
from storefront.infrastructure.db import get_db
from storefront.infrastructure.gateway import RazorpayGateway
from storefront.infrastructure.order_store import OrderStore
from storefront.infrastructure.push import WebPushSender
from storefront.infrastructure.registry import AdminConnectionRegistry, PushSubscriptionRegistry

# One per process; shared by the fan-out, the subscription endpoints and /metrics
push_subscriptions = PushSubscriptionRegistry()
admin_connections = AdminConnectionRegistry()

def get_gateway() -> RazorpayGateway:
    return RazorpayGateway()

def get_catalog() -> ProductCatalog:
    return ProductCatalog()

def get_push_sender() -> Optional[WebPushSender]:
    sender = WebPushSender()
    return sender if sender.enabled else None

def get_subscriptions() -> PushSubscriptionRegistry:
    return push_subscriptions

def get_connections() -> AdminConnectionRegistry:
    return admin_connections

def get_fanout(
    subscriptions: PushSubscriptionRegistry = Depends(get_subscriptions),
    connections: AdminConnectionRegistry = Depends(get_connections),
    push_sender: Optional[WebPushSender] = Depends(get_push_sender),
) -> NotificationFanout:
    return NotificationFanout(subscriptions, connections, push_sender)

def get_order_service(
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
    catalog: ProductCatalog = Depends(get_catalog),
) -> OrderService:
    return OrderService(OrderStore(db), gateway, catalog)
