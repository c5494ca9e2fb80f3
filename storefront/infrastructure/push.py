from typing import Optional

from pywebpush import WebPushException, webpush

from storefront.core_settings import Settings, get_settings
from storefront.errors import DeliveryFailure, SubscriptionExpired


class WebPushSender:
    """Sends one encrypted Web Push message, signed with the service's VAPID key."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.VAPID_PUBLIC_KEY and self.settings.VAPID_PRIVATE_KEY)

    def send(self, subscription: dict, payload: bytes) -> None:
        endpoint = subscription.get("endpoint")
        try:
            webpush(
                subscription_info=subscription,
                data=payload,
                vapid_private_key=self.settings.VAPID_PRIVATE_KEY,
                # webpush adds aud/exp to the claims dict, so pass a fresh one
                vapid_claims={"sub": self.settings.VAPID_CLAIM_EMAIL},
                ttl=self.settings.PUSH_TTL_SECONDS,
                timeout=self.settings.GATEWAY_TIMEOUT_SECONDS,
            )
        except WebPushException as e:
            status = e.response.status_code if e.response is not None else None
            if status in (404, 410):
                raise SubscriptionExpired(f"Push subscription expired ({status})", target=endpoint) from e
            raise DeliveryFailure(f"Push delivery failed: {e}", target=endpoint) from e
