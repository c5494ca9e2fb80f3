from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None
    RUN_MIGRATIONS: bool = True

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    PAYMENT_CURRENCY: str = "INR"
    # Minor units (paise); the provider rejects anything above ₹5,00,000
    MAX_PAYMENT_AMOUNT: int = 50_000_000
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    PRODUCTS_SERVICE_URL: str = "http://products:8000"
    CATALOG_TIMEOUT_SECONDS: float = 5.0

    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_CLAIM_EMAIL: str = "mailto:admin@example.com"
    PUSH_TTL_SECONDS: int = 86400

    SHIPPING_PRICE: float = 1250
    TAX_RATE: float = 0.05
    ORDERS_DEFAULT_PAGE_SIZE: int = 10
    ORDERS_MAX_PAGE_SIZE: int = 50
    STORE_TIMEZONE: str = "Asia/Kolkata"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
