"""
Configuration & Environment Management for the waitlist service
"""

import secrets
from functools import lru_cache
from typing import Any, List, Optional

from pydantic import EmailStr, field_validator
from pydantic_settings import BaseSettings as PydanticBaseSettings



class DatabaseSettings(PydanticBaseSettings):
    """Database configuration settings"""

    # A full URL wins over the discrete parts below
    URL: Optional[str] = None

    HOST: str = "localhost"
    PORT: int = 5432
    USER: str = "postgres"
    PASSWORD: str = ""
    NAME: str = "sweatspot"

    # Connection Pool Settings
    POOL_SIZE: int = 20
    MAX_OVERFLOW: int = 30
    POOL_TIMEOUT: int = 30
    POOL_RECYCLE: int = 3600
    POOL_PRE_PING: bool = True
    ECHO: bool = False

    # Connection Timeouts
    COMMAND_TIMEOUT: int = 60
    STATEMENT_TIMEOUT: str = "60s"
    LOCK_TIMEOUT: str = "30s"
    IDLE_IN_TRANSACTION_TIMEOUT: str = "10min"

    # Seconds a SQLite connection waits on a competing writer
    SQLITE_BUSY_TIMEOUT: int = 20

    @property
    def database_url(self) -> str:
        """Generate database URL for async connections"""
        if self.URL:
            return self.URL
        return f"postgresql+asyncpg://{self.USER}:{self.PASSWORD}@{self.HOST}:{self.PORT}/{self.NAME}"

    model_config = {"env_prefix": "DB_", "case_sensitive": True}


class RedisSettings(PydanticBaseSettings):
    """Redis configuration settings (Celery broker and result backend)"""

    HOST: str = "localhost"
    PORT: int = 6379
    PASSWORD: Optional[str] = None
    USERNAME: Optional[str] = None
    BROKER_DB: int = 1
    BACKEND_DB: int = 2

    def _url(self, db: int) -> str:
        auth = ""
        if self.USERNAME and self.PASSWORD:
            auth = f"{self.USERNAME}:{self.PASSWORD}@"
        elif self.PASSWORD:
            auth = f":{self.PASSWORD}@"

        return f"redis://{auth}{self.HOST}:{self.PORT}/{db}"

    @property
    def broker_url(self) -> str:
        return self._url(self.BROKER_DB)

    @property
    def backend_url(self) -> str:
        return self._url(self.BACKEND_DB)

    model_config = {"env_prefix": "REDIS_", "case_sensitive": True}


class SecuritySettings(PydanticBaseSettings):
    """Verification of bearer tokens issued by the auth provider"""

    JWT_SECRET_KEY: str = secrets.token_urlsafe(32)
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None
    JWT_ISSUER: Optional[str] = None
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    model_config = {"env_prefix": "SECURITY_", "case_sensitive": True}


class WaitlistSettings(PydanticBaseSettings):
    """Waitlist policy constants. Per-event columns override these."""

    # How long a promoted user has to book before the offer lapses
    NOTIFICATION_WINDOW_HOURS: int = 24
    # Waitlisting is only accepted once the event is full
    REQUIRE_FULL: bool = True
    DEFAULT_LIMIT: int = 50
    SWEEP_INTERVAL_SECONDS: int = 300
    HOST_MILESTONES: List[int] = [5, 10, 20, 50]
    URGENCY_THRESHOLD: int = 5
    # Whole-operation retries after a lost capacity race
    TRANSACTION_RETRIES: int = 1

    model_config = {"env_prefix": "WAITLIST_", "case_sensitive": True}


class MonitoringSettings(PydanticBaseSettings):
    """Monitoring and observability settings"""

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    ENABLE_PROMETHEUS: bool = True

    model_config = {"env_prefix": "MONITORING_", "case_sensitive": True}


class EmailSettings(PydanticBaseSettings):
    """Email configuration settings"""

    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_FROM_EMAIL: Optional[EmailStr] = None
    SENDGRID_FROM_NAME: str = "SweatSpot"
    # Still requires the API key and sender address to actually send
    EMAILS_ENABLED: bool = True

    model_config = {"env_prefix": "EMAIL_", "case_sensitive": True}


class PaymentSettings(PydanticBaseSettings):
    """Payment provider settings"""

    STRIPE_SECRET_KEY: Optional[str] = None
    REFUND_REASON: str = "requested_by_customer"

    model_config = {"env_prefix": "PAYMENT_", "case_sensitive": True}


class Settings(PydanticBaseSettings):
    """Main application settings"""

    # Environment
    ENVIRONMENT: str = "development"
    TESTING: bool = False
    VERSION: str = "1.0.0"

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "SweatSpot"

    # CORS Configuration
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: Any) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, list):
            return v
        return []

    # Celery
    CELERY_TASK_SERIALIZER: str = "json"
    CELERY_RESULT_SERIALIZER: str = "json"
    CELERY_ACCEPT_CONTENT: List[str] = ["json"]
    CELERY_TIMEZONE: str = "UTC"
    CELERY_ENABLE_UTC: bool = True

    # Component Settings
    database: DatabaseSettings = DatabaseSettings()
    redis: RedisSettings = RedisSettings()
    security: SecuritySettings = SecuritySettings()
    waitlist: WaitlistSettings = WaitlistSettings()
    monitoring: MonitoringSettings = MonitoringSettings()
    email: EmailSettings = EmailSettings()
    payment: PaymentSettings = PaymentSettings()

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.TESTING:
            return "sqlite+aiosqlite:///:memory:"
        return self.database.database_url

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "validate_assignment": True,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
