from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.errors import CatalogUnavailable

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: str
    title: str
    price: Decimal
    image: Optional[str] = None
    is_active: bool = True


class ProductCatalog:
    """Read-only client for the products service."""

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    def fetch(self, product_id: str) -> Optional[ProductSnapshot]:
        """Current title/price of a product, or None if it does not exist."""
        try:
            with httpx.Client(timeout=self.settings.CATALOG_TIMEOUT_SECONDS, transport=self._transport) as client:
                response = client.get(f"{self.settings.PRODUCTS_SERVICE_URL}/products/{product_id}")
        except httpx.HTTPError as e:
            logger.warning(f"Catalog unreachable fetching product {product_id}: {e}")
            raise CatalogUnavailable("Product catalog is unavailable, please retry") from e
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise CatalogUnavailable(f"Product catalog error ({response.status_code})")

        data = response.json()
        return ProductSnapshot(
            product_id=str(data.get("id", product_id)),
            title=data.get("title") or data.get("name") or "",
            price=Decimal(str(data.get("price", 0))),
            image=data.get("image") or data.get("featured_img"),
            is_active=bool(data.get("is_active", True)),
        )
