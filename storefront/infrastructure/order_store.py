"""Persistence for orders.

All state changes are single conditional ``UPDATE`` statements: the ``WHERE``
clause carries the guard (unpaid, current status) so two requests racing on
the same order cannot both apply. The store never caches orders; every call
reads the database.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.domain.models import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    STATUS_TIMESTAMPS,
    can_transition,
    utcnow,
)
from storefront.errors import InvalidTransition, NotFound, ValidationError

logger = get_logger(__name__)

CENT = Decimal("0.01")
REQUIRED_ADDRESS_FIELDS = ("full_name", "street", "city", "postal_code", "country")
SORTABLE_FIELDS = {
    "created_at": Order.created_at,
    "total_price": Order.total_price,
    "status": Order.status,
}


@dataclass
class LineItem:
    product_id: str
    title: str
    quantity: int
    unit_price: Decimal
    image: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass
class Pricing:
    items_price: Decimal
    shipping_price: Decimal
    tax_price: Decimal
    total_price: Decimal


@dataclass
class OrderPage:
    orders: list[Order]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.page_size) if self.total else 0


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


class OrderStore:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def create_pending_order(
        self,
        user_id: str,
        items: list[LineItem],
        shipping_address: dict,
        pricing: Pricing,
        payment_method: PaymentMethod = PaymentMethod.CARD,
        user_email: Optional[str] = None,
    ) -> Order:
        if not user_id:
            raise ValidationError("Order owner is required", field="user")
        self._validate_items(items)
        self._validate_address(shipping_address)
        self._validate_pricing(items, pricing)

        order = Order(
            user_id=user_id,
            user_email=user_email,
            shipping_address=dict(shipping_address),
            payment_method=PaymentMethod(payment_method).value,
            items_price=_money(pricing.items_price),
            shipping_price=_money(pricing.shipping_price),
            tax_price=_money(pricing.tax_price),
            total_price=_money(pricing.total_price),
            is_paid=False,
            status=OrderStatus.PROCESSING.value,
            created_at=utcnow(),
        )
        self.db.add(order)
        self.db.flush()  # assign id
        order.order_number = f"ORD-{order.created_at.year}-{order.id:05d}"
        for item in items:
            self.db.add(OrderItem(
                order_id=order.id,
                product_id=item.product_id,
                title=item.title,
                image=item.image,
                size=item.size,
                color=item.color,
                quantity=item.quantity,
                unit_price=_money(item.unit_price),
            ))
        self.db.commit()
        logger.info(
            "Order created",
            extra={'extra_fields': {'order_id': order.id, 'total_price': str(order.total_price)}},
        )
        return self.get_by_id(order.id)

    def mark_paid(
        self,
        order_id: int,
        paid_at: Optional[datetime] = None,
        payment_id: Optional[str] = None,
        order_ref: Optional[str] = None,
    ) -> Order:
        """Set ``is_paid``/``paid_at`` once. Calling again returns the paid order unchanged.

        A ``payment_id`` already recorded on another order is refused with
        ``InvalidTransition``; one captured payment settles at most one order.
        """
        stmt = update(Order).where(
            Order.id == order_id,
            Order.is_paid.is_(False),
            Order.status == OrderStatus.PROCESSING.value,
        )
        if payment_id is not None:
            other = aliased(Order)
            stmt = stmt.where(~exists().where(other.payment_id == payment_id))
        stmt = (
            stmt.values(
                is_paid=True,
                paid_at=paid_at or utcnow(),
                payment_id=payment_id,
                payment_order_ref=order_ref,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except IntegrityError:
            # Unique payment_id: a concurrent request recorded it on another order first
            self.db.rollback()
            raise InvalidTransition(f"Payment {payment_id} was already applied to another order") from None
        order = self.get_by_id(order_id)

        if result.rowcount == 1:
            logger.info("Order marked paid", extra={'extra_fields': {'order_id': order_id, 'payment_id': payment_id}})
            return order
        if order.is_paid:
            logger.info("Order already paid, ignoring repeat", extra={'extra_fields': {'order_id': order_id}})
            return order
        if order.status == OrderStatus.PROCESSING.value:
            raise InvalidTransition(f"Payment {payment_id} was already applied to another order")
        raise InvalidTransition(f"Order {order_id} is {order.status} and can no longer be paid")

    def transition_status(
        self,
        order_id: int,
        new_status,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Order:
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown order status {new_status!r}", field="status") from None

        order = self.get_by_id(order_id)
        current = OrderStatus(order.status)
        if not can_transition(current, target):
            raise InvalidTransition(f"Cannot move order {order_id} from {current.value} to {target.value}")
        if target is OrderStatus.SHIPPED and not order.is_paid:
            raise InvalidTransition(f"Order {order_id} must be paid before it can be shipped")
        if target is OrderStatus.CANCELLED and not (reason and reason.strip()):
            raise ValidationError("A cancellation reason is required", field="reason")

        values = {
            "status": target.value,
            "updated_by": actor_id,
            STATUS_TIMESTAMPS[target]: utcnow(),
        }
        if target is OrderStatus.CANCELLED:
            values["cancel_reason"] = reason.strip()

        stmt = update(Order).where(Order.id == order_id, Order.status == current.value)
        if target is OrderStatus.SHIPPED:
            stmt = stmt.where(Order.is_paid.is_(True))
        result = self.db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        self.db.commit()

        order = self.get_by_id(order_id)
        if result.rowcount != 1:
            raise InvalidTransition(
                f"Order {order_id} changed concurrently and is now {order.status}"
            )
        logger.info(
            "Order status changed",
            extra={'extra_fields': {'order_id': order_id, 'from': current.value, 'to': target.value, 'actor': actor_id}},
        )
        return order

    def get_by_id(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def list_for_user(self, user_id: str, page: int = 1, page_size: Optional[int] = None) -> OrderPage:
        page, page_size = self._page_params(page, page_size)
        base = select(Order).where(Order.user_id == user_id)
        total = self.db.scalar(select(func.count()).select_from(base.subquery()))
        orders = self.db.scalars(
            base.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return OrderPage(orders=list(orders), total=total, page=page, page_size=page_size)

    def list_all(
        self,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        min_total: Optional[Decimal] = None,
        max_total: Optional[Decimal] = None,
        search: Optional[str] = None,
        sort: str = "-created_at",
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> OrderPage:
        """Admin listing with filters. Dates are inclusive whole days in the store timezone."""
        page, page_size = self._page_params(page, page_size)
        query = select(Order)
        if status:
            try:
                query = query.where(Order.status == OrderStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown order status {status!r}", field="status") from None
        tz = ZoneInfo(self.settings.STORE_TIMEZONE)
        if start_date:
            start = datetime.combine(start_date, time.min, tzinfo=tz)
            query = query.where(Order.created_at >= start.astimezone(timezone.utc))
        if end_date:
            end = datetime.combine(end_date, time.min, tzinfo=tz) + timedelta(days=1)
            query = query.where(Order.created_at < end.astimezone(timezone.utc))
        if min_total is not None:
            query = query.where(Order.total_price >= min_total)
        if max_total is not None:
            query = query.where(Order.total_price <= max_total)
        if search:
            query = query.where(Order.user_email.ilike(f"%{search}%"))

        descending = sort.startswith("-")
        column = SORTABLE_FIELDS.get(sort.lstrip("-"))
        if column is None:
            raise ValidationError(f"Cannot sort by {sort!r}", field="sort")

        total = self.db.scalar(select(func.count()).select_from(query.subquery()))
        orders = self.db.scalars(
            query.order_by(column.desc() if descending else column.asc(), Order.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return OrderPage(orders=list(orders), total=total, page=page, page_size=page_size)

    def summary(self, now: Optional[datetime] = None) -> dict:
        """Order counts and revenue for today, this week, this month and all time."""
        tz = ZoneInfo(self.settings.STORE_TIMEZONE)
        local_now = (now or utcnow()).astimezone(tz)
        start_of_day = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        # Weeks start on Sunday
        start_of_week = start_of_day - timedelta(days=(start_of_day.weekday() + 1) % 7)
        start_of_month = start_of_day.replace(day=1)

        result = {}
        for label, since in (
            ("today", start_of_day),
            ("week", start_of_week),
            ("month", start_of_month),
            ("total", None),
        ):
            query = select(func.count(Order.id), func.coalesce(func.sum(Order.total_price), 0))
            if since is not None:
                query = query.where(Order.created_at >= since.astimezone(timezone.utc))
            count, revenue = self.db.execute(query).one()
            result[f"{label}_orders"] = count
            result[f"{label}_revenue"] = float(revenue)
        return result

    def status_counts(self) -> list[dict]:
        rows = self.db.execute(
            select(Order.status, func.count(Order.id)).group_by(Order.status).order_by(Order.status)
        ).all()
        return [{"status": status, "count": count} for status, count in rows]

    def _page_params(self, page, page_size) -> tuple[int, int]:
        if page_size is None:
            page_size = self.settings.ORDERS_DEFAULT_PAGE_SIZE
        for name, value in (("page", page), ("limit", page_size)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(f"{name} must be a positive integer", field=name)
        return page, min(page_size, self.settings.ORDERS_MAX_PAGE_SIZE)

    @staticmethod
    def _validate_items(items: list[LineItem]) -> None:
        if not items:
            raise ValidationError("Order must contain at least one item", field="items")
        for index, item in enumerate(items):
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
                raise ValidationError("Quantity must be at least 1", field=f"items[{index}].quantity")
            if Decimal(str(item.unit_price)) < 0:
                raise ValidationError("Price cannot be negative", field=f"items[{index}].unit_price")

    @staticmethod
    def _validate_address(address: dict) -> None:
        if not address:
            raise ValidationError("Shipping address is required", field="shipping_address")
        for name in REQUIRED_ADDRESS_FIELDS:
            value = address.get(name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Shipping address {name} is required", field=f"shipping_address.{name}")

    @staticmethod
    def _validate_pricing(items: list[LineItem], pricing: Pricing) -> None:
        parts = {
            "items_price": _money(pricing.items_price),
            "shipping_price": _money(pricing.shipping_price),
            "tax_price": _money(pricing.tax_price),
            "total_price": _money(pricing.total_price),
        }
        for name, value in parts.items():
            if value < 0:
                raise ValidationError(f"{name} cannot be negative", field=f"pricing.{name}")
        expected_items = sum((_money(i.unit_price) * i.quantity for i in items), Decimal("0"))
        if parts["items_price"] != expected_items:
            raise ValidationError(
                f"items_price {parts['items_price']} does not match line items ({expected_items})",
                field="pricing.items_price",
            )
        if parts["total_price"] != parts["items_price"] + parts["shipping_price"] + parts["tax_price"]:
            raise ValidationError(
                "total_price must equal items_price + shipping_price + tax_price",
                field="pricing.total_price",
            )
