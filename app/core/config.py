"""
Application configuration management using Pydantic Settings
Handles all environment variables and application settings
"""

from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Optional, List
from decimal import Decimal
from functools import lru_cache

class Settings(BaseSettings):
    """Main application settings"""

    # Application Settings
    APP_NAME: str = "ExamPrep Affiliate API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    API_PREFIX: str = "/api"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database Configuration
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # Redis Configuration
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_MAX_CONNECTIONS: int = 50

    # Security Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS Configuration
    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_HOSTS: List[str] = ["localhost", "127.0.0.1"]
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Payment notifications
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None
    LOG_MAX_BYTES: int = 10 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 5

    # Monitoring
    PROMETHEUS_ENABLED: bool = True

    # Affiliate program
    AFFILIATE_COMMISSION_RATE: Decimal = Field(Decimal("0.13"), ge=0, le=1)
    AFFILIATE_FRAUD_LOOKBACK: int = Field(10, ge=1, le=10)
    AFFILIATE_STATS_LIMIT: int = 20
    REFERRAL_CODE_LENGTH: int = 8

    # Rate Limiting (sliding window, per route class)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE: str = "memory"  # memory, redis
    RATE_LIMIT_WINDOW_MS: int = Field(60_000, gt=0)
    RATE_LIMIT_AUTH_LIMIT: int = Field(10, gt=0)
    RATE_LIMIT_EXPENSIVE_LIMIT: int = Field(5, gt=0)
    RATE_LIMIT_DEFAULT_LIMIT: int = Field(60, gt=0)
    RATE_LIMIT_AUTH_PREFIXES: List[str] = ["/api/v1/auth"]
    RATE_LIMIT_EXPENSIVE_PREFIXES: List[str] = ["/api/v1/ai", "/api/v1/pdf"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL

@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()

# Global settings instance
settings = get_settings()
