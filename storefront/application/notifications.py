"""New-order notification fan-out.

Each receiver (push subscription or admin socket) is tried independently and
concurrently. Failures are logged and counted, never raised: a purchaser's
checkout must not fail because an admin's browser subscription expired.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket
from starlette.concurrency import run_in_threadpool

from storefront.application.schemas import OrderRead
from storefront.core.logging_config import get_logger
from storefront.errors import SubscriptionExpired
from storefront.infrastructure.push import WebPushSender
from storefront.infrastructure.registry import AdminConnectionRegistry, PushSubscriptionRegistry

logger = get_logger(__name__)

NEW_ORDER_EVENT = "new-order"


@dataclass
class FanoutReport:
    delivered: int = 0
    failed: int = 0


def build_order_summary(order: OrderRead) -> dict:
    summary = order.model_dump(mode="json")
    summary["user"] = order.user_email or order.user_id
    summary["totalAmount"] = float(order.total_price)
    return summary


class NotificationFanout:
    def __init__(
        self,
        subscriptions: PushSubscriptionRegistry,
        connections: AdminConnectionRegistry,
        push_sender: Optional[WebPushSender] = None,
    ):
        self.subscriptions = subscriptions
        self.connections = connections
        self.push_sender = push_sender

    async def notify_new_order(self, summary: dict) -> FanoutReport:
        payload = json.dumps({
            "title": "New Order",
            "body": f"From {summary['user']}, Total: ₹{summary['totalAmount']}",
            "url": "/admin/orders",
            "orderId": summary.get("id"),
        }).encode("utf-8")
        message = {"event": NEW_ORDER_EVENT, "data": summary}

        attempts = [self._emit(ws, message) for ws in self.connections.list()]
        if self.push_sender is not None:
            attempts.extend(self._push(sub, payload) for sub in self.subscriptions.list())

        outcomes = await asyncio.gather(*attempts)
        report = FanoutReport(delivered=sum(outcomes), failed=len(outcomes) - sum(outcomes))
        logger.info(
            "New order notification fan-out finished",
            extra={'extra_fields': {'order_id': summary.get("id"), 'delivered': report.delivered, 'failed': report.failed}},
        )
        return report

    async def _push(self, subscription: dict, payload: bytes) -> bool:
        endpoint = subscription.get("endpoint")
        try:
            await run_in_threadpool(self.push_sender.send, subscription, payload)
            return True
        except SubscriptionExpired:
            self.subscriptions.remove_key(endpoint)
            logger.info("Removed expired push subscription", extra={'extra_fields': {'endpoint': endpoint}})
        except Exception:
            logger.warning("Push delivery failed", exc_info=True, extra={'extra_fields': {'endpoint': endpoint}})
        return False

    async def _emit(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_json(message)
            return True
        except Exception:
            # A socket that cannot be written to is gone; the handler's own cleanup may not have run yet
            self.connections.remove(websocket)
            logger.warning("Admin socket delivery failed", exc_info=True)
        return False
