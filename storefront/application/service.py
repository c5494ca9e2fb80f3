"""Order lifecycle orchestration.

checkout -> initiate payment -> verify payment -> mark paid -> ship/deliver or cancel.
Errors from the gateway and the store propagate unchanged; the API layer maps
them to responses. Gateway calls are never retried here.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from storefront.application.schemas import (
    OrderCreate,
    PaymentInitiate,
    PaymentVerify,
    PricingInput,
    Principal,
    StatusUpdate,
)
from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.domain.models import Order, OrderStatus, utcnow
from storefront.errors import Forbidden, InvalidTransition, ValidationError
from storefront.infrastructure.catalog import ProductCatalog
from storefront.infrastructure.gateway import PaymentIntent, RazorpayGateway
from storefront.infrastructure.order_store import LineItem, OrderPage, OrderStore, Pricing

logger = get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class PaymentVerification:
    verified: bool
    order: Order


class OrderService:
    def __init__(
        self,
        store: OrderStore,
        gateway: RazorpayGateway,
        catalog: ProductCatalog,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.catalog = catalog
        self.settings = settings or get_settings()

    def checkout(self, principal: Principal, data: OrderCreate) -> Order:
        """Create the pending (``processing``, unpaid) order for a cart."""
        if principal.is_guest:
            raise Forbidden("Sign in to place an order")
        if not data.items:
            raise ValidationError("Order must contain at least one item", field="items")

        items = [self._snapshot_item(index, item) for index, item in enumerate(data.items)]
        pricing = self._price(items, data.pricing)
        return self.store.create_pending_order(
            user_id=principal.user_id,
            user_email=principal.email,
            items=items,
            shipping_address=data.shipping_address.model_dump(),
            pricing=pricing,
            payment_method=data.payment_method,
        )

    def initiate_payment(self, principal: Principal, data: PaymentInitiate) -> PaymentIntent:
        metadata = dict(data.notes)
        metadata.update({
            "user_id": principal.user_id,
            "email": principal.email or "",
            "purpose": "order_payment",
        })
        if data.order_id is not None:
            order = self._owned_order(principal, data.order_id)
            self._ensure_payable(order)
            expected = to_minor_units(order.total_price)
            if data.amount != expected:
                raise ValidationError(
                    f"Amount {data.amount} does not match order total ({expected})", field="amount"
                )
            metadata["order_id"] = order.id
        return self.gateway.create_intent(data.amount, data.receipt, metadata)

    def verify_payment(self, principal: Principal, data: PaymentVerify) -> PaymentVerification:
        order = self._owned_order(principal, data.order_id)
        result = self.gateway.verify(data.model_dump(exclude={"order_id"}))
        if not result.valid:
            logger.info(
                "Payment verification failed, order left unpaid",
                extra={'extra_fields': {'order_id': order.id, 'order_ref': result.order_ref}},
            )
            return PaymentVerification(verified=False, order=order)
        # An intent created for a specific order only pays that order
        linked_order = result.notes.get("order_id")
        if linked_order is not None and str(linked_order) != str(order.id):
            logger.warning(
                "Payment belongs to a different order, order left unpaid",
                extra={'extra_fields': {'order_id': order.id, 'linked_order_id': linked_order, 'order_ref': result.order_ref}},
            )
            return PaymentVerification(verified=False, order=order)

        expected = to_minor_units(order.total_price)
        if result.amount_paid != expected:
            raise ValidationError(
                f"Paid amount {result.amount_paid} does not match order total ({expected})", field="amount"
            )
        order = self.store.mark_paid(
            order.id,
            paid_at=utcnow(),
            payment_id=result.payment_id,
            order_ref=result.order_ref,
        )
        return PaymentVerification(verified=True, order=order)

    def update_status(self, principal: Principal, order_id: int, data: StatusUpdate) -> Order:
        return self.store.transition_status(
            order_id, data.status, actor_id=principal.user_id, reason=data.reason
        )

    def get_order(self, principal: Principal, order_id: int) -> Order:
        order = self.store.get_by_id(order_id)
        if not principal.is_admin and order.user_id != principal.user_id:
            raise Forbidden("Not allowed to view this order")
        return order

    def list_my_orders(self, principal: Principal, page: int = 1, limit: Optional[int] = None) -> OrderPage:
        return self.store.list_for_user(principal.user_id, page=page, page_size=limit)

    def list_orders(self, **filters) -> OrderPage:
        return self.store.list_all(**filters)

    def summary(self) -> dict:
        return self.store.summary()

    def status_counts(self) -> list[dict]:
        return self.store.status_counts()

    def _owned_order(self, principal: Principal, order_id: int) -> Order:
        order = self.store.get_by_id(order_id)
        if order.user_id != principal.user_id:
            raise Forbidden("Order belongs to another user")
        return order

    @staticmethod
    def _ensure_payable(order: Order) -> None:
        if order.is_paid:
            raise InvalidTransition(f"Order {order.id} is already paid")
        if order.status != OrderStatus.PROCESSING.value:
            raise InvalidTransition(f"Order {order.id} is {order.status} and can no longer be paid")

    def _snapshot_item(self, index: int, item) -> LineItem:
        product = self.catalog.fetch(item.product_id)
        if product is None or not product.is_active:
            raise ValidationError(
                f"Product {item.product_id} does not exist", field=f"items[{index}].product_id"
            )
        return LineItem(
            product_id=product.product_id,
            title=product.title,
            image=product.image,
            size=item.size,
            color=item.color,
            quantity=item.quantity,
            unit_price=product.price,
        )

    def _price(self, items: list[LineItem], supplied: Optional[PricingInput]) -> Pricing:
        items_price = sum((Decimal(str(i.unit_price)) * i.quantity for i in items), Decimal("0"))
        if supplied is not None:
            # The store rejects totals that disagree with the snapshot
            return Pricing(
                items_price=supplied.items_price,
                shipping_price=supplied.shipping_price,
                tax_price=supplied.tax_price,
                total_price=supplied.total_price,
            )
        shipping = Decimal(str(self.settings.SHIPPING_PRICE))
        tax = (items_price * Decimal(str(self.settings.TAX_RATE))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return Pricing(
            items_price=items_price,
            shipping_price=shipping,
            tax_price=tax,
            total_price=items_price + shipping + tax,
        )
