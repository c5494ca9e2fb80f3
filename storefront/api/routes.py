from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import JSONResponse

from storefront.api.auth import get_current_principal, require_admin
from storefront.api.dependencies import get_fanout, get_order_service
from storefront.application.notifications import NotificationFanout, build_order_summary
from storefront.application.schemas import (
    OrderCreate,
    OrderListResponse,
    OrderRead,
    OrderSummary,
    Pagination,
    PaymentInitiate,
    PaymentIntentRead,
    PaymentVerificationRead,
    PaymentVerify,
    Principal,
    StatusCount,
    StatusUpdate,
)
from storefront.application.service import OrderService
from storefront.domain.models import OrderStatus
from storefront.infrastructure.order_store import OrderPage

router = APIRouter(prefix="/orders", tags=["orders"])

def _page_response(page: OrderPage) -> OrderListResponse:
    return OrderListResponse(
        orders=[OrderRead.model_validate(o) for o in page.orders],
        pagination=Pagination(
            page=page.page,
            limit=page.page_size,
            total_orders=page.total,
            total_pages=page.total_pages,
        ),
    )

@router.post("", response_model=OrderRead, status_code=201)
def create_order(
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
    service: OrderService = Depends(get_order_service),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Checkout: create the pending order and alert admins after responding."""
    order = OrderRead.model_validate(service.checkout(principal, payload))
    background_tasks.add_task(fanout.notify_new_order, build_order_summary(order))
    return order

@router.post("/initiate-payment", response_model=PaymentIntentRead)
def initiate_payment(
    payload: PaymentInitiate,
    principal: Principal = Depends(get_current_principal),
    service: OrderService = Depends(get_order_service),
):
    intent = service.initiate_payment(principal, payload)
    return PaymentIntentRead(id=intent.id, amount=intent.amount, currency=intent.currency, receipt=intent.receipt)

@router.post("/verify-payment", response_model=PaymentVerificationRead)
def verify_payment(
    payload: PaymentVerify,
    principal: Principal = Depends(get_current_principal),
    service: OrderService = Depends(get_order_service),
):
    """Safe to repeat: an already paid order is returned unchanged."""
    outcome = service.verify_payment(principal, payload)
    body = PaymentVerificationRead(verified=outcome.verified, order=OrderRead.model_validate(outcome.order))
    if not outcome.verified:
        return JSONResponse(status_code=400, content=body.model_dump(mode="json"))
    return body

@router.get("/my-orders", response_model=OrderListResponse)
def my_orders(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, description="Page size, capped by ORDERS_MAX_PAGE_SIZE"),
    principal: Principal = Depends(get_current_principal),
    service: OrderService = Depends(get_order_service),
):
    return _page_response(service.list_my_orders(principal, page=page, limit=limit))

@router.get("", response_model=OrderListResponse, dependencies=[Depends(require_admin)])
def list_orders(
    status: Optional[OrderStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    min_total_price: Optional[Decimal] = Query(None, ge=0),
    max_total_price: Optional[Decimal] = Query(None, ge=0),
    search: Optional[str] = Query(None, max_length=100),
    sort: str = "-created_at",
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    service: OrderService = Depends(get_order_service),
):
    """All orders, newest first by default. Admin only."""
    return _page_response(service.list_orders(
        status=status.value if status else None,
        start_date=start_date,
        end_date=end_date,
        min_total=min_total_price,
        max_total=max_total_price,
        search=search,
        sort=sort,
        page=page,
        page_size=limit,
    ))

@router.get("/summary", response_model=OrderSummary, dependencies=[Depends(require_admin)])
def order_summary(service: OrderService = Depends(get_order_service)):
    return service.summary()

@router.get("/status-stats", response_model=list[StatusCount], dependencies=[Depends(require_admin)])
def order_status_stats(service: OrderService = Depends(get_order_service)):
    return service.status_counts()

@router.put("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: int,
    payload: StatusUpdate,
    principal: Principal = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    return service.update_status(principal, order_id, payload)

@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: int,
    principal: Principal = Depends(get_current_principal),
    service: OrderService = Depends(get_order_service),
):
    return service.get_order(principal, order_id)
