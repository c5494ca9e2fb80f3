from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from storefront.api.auth import decode_access_token, principal_from_claims, require_admin
from storefront.api.dependencies import get_connections, get_subscriptions
from storefront.application.schemas import PushSubscriptionCreate
from storefront.core.logging_config import get_logger
from storefront.core_settings import get_settings
from storefront.errors import NotFound
from storefront.infrastructure.registry import AdminConnectionRegistry, PushSubscriptionRegistry

logger = get_logger(__name__)

router = APIRouter(tags=["notifications"])

@router.get("/notifications/vapid-public-key")
def vapid_public_key():
    """Public key the admin browser needs to create a push subscription."""
    return {"public_key": get_settings().VAPID_PUBLIC_KEY}

@router.post("/notifications/subscriptions", status_code=201, dependencies=[Depends(require_admin)])
def subscribe(
    payload: PushSubscriptionCreate,
    subscriptions: PushSubscriptionRegistry = Depends(get_subscriptions),
):
    subscriptions.add(payload.model_dump())
    return {"success": True, "subscriptions": len(subscriptions)}

@router.delete("/notifications/subscriptions", status_code=204, dependencies=[Depends(require_admin)])
def unsubscribe(
    endpoint: str = Query(...),
    subscriptions: PushSubscriptionRegistry = Depends(get_subscriptions),
):
    if not subscriptions.remove_key(endpoint):
        raise NotFound("Push subscription not found")
    return None

@router.websocket("/ws/admin")
async def admin_socket(
    websocket: WebSocket,
    token: Optional[str] = None,
    connections: AdminConnectionRegistry = Depends(get_connections),
):
    """Real-time admin channel. Receives a ``new-order`` event per checkout."""
    principal = principal_from_claims(decode_access_token(token)) if token else None
    if principal is None or not principal.is_admin:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connections.add(websocket)
    # Sent once registered, so the client knows new-order events will reach it
    await websocket.send_json({"event": "connected", "data": {"admin": principal.user_id}})
    logger.info("Admin socket connected", extra={'extra_fields': {'admin': principal.user_id, 'connections': len(connections)}})
    try:
        while True:
            # Admins only listen; inbound frames are keep-alives
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        connections.remove(websocket)
        logger.info("Admin socket disconnected", extra={'extra_fields': {'admin': principal.user_id}})
