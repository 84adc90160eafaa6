from pydantic_settings import BaseSettings
from typing import List
from decimal import Decimal
import json


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./freshfarmily.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_STATEMENT_TIMEOUT_MS: int = 5000  # PostgreSQL only
    DATABASE_TRANSACTION_RETRIES: int = 3  # deadlocks, serialization failures, dropped connections

    # JWT (tokens are issued by the auth service, we only verify them)
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    BACKEND_CORS_ORIGINS: str = '["*"]'

    @property
    def cors_origins(self) -> List[str]:
        try:
            return json.loads(self.BACKEND_CORS_ORIGINS)
        except ValueError:
            return ["*"]

    # Referral program
    MAX_LIFETIME_FREE_DELIVERIES: int = 30
    MAX_LIFETIME_CASHBACK: Decimal = Decimal("300.00")
    FREE_DELIVERIES_PER_REFERRAL: int = 3
    CASHBACK_PER_FARMER_REFERRAL: Decimal = Decimal("30.00")

    # Referral codes: prefix + hex of N random bytes (4 bytes -> "FF" + 8 chars)
    REFERRAL_CODE_RANDOM_BYTES: int = 4
    REFERRAL_CODE_MAX_ATTEMPTS: int = 10

    # Application
    APP_NAME: str = "FreshFarmily"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api"
    DEBUG: bool = True

    @property
    def referral_limits(self) -> dict:
        return {
            "max_lifetime_free_deliveries": self.MAX_LIFETIME_FREE_DELIVERIES,
            "max_lifetime_cashback": self.MAX_LIFETIME_CASHBACK,
            "free_deliveries_per_referral": self.FREE_DELIVERIES_PER_REFERRAL,
            "cashback_per_referral": self.CASHBACK_PER_FARMER_REFERRAL,
        }

    class Config:
        env_file = [".env", "backend/.env"]
        case_sensitive = True
        extra = "ignore"
        frozen = True


settings = Settings()
