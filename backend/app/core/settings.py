"""
ShopFloor - Configuration Management with pydantic-settings

Provides validated, type-safe configuration from environment variables.
All settings can be overridden via environment variables or .env file.
"""
from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with validation.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # ===================
    # Application Settings
    # ===================
    PROJECT_NAME: str = "ShopFloor Inventory"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="deployment environment")

    # ===================
    # Store Settings
    # ===================
    STORE_BACKEND: str = Field(
        default="database",
        description="Where inventory state lives: 'database' (SQLAlchemy) or 'supabase' (hosted REST)"
    )
    DATABASE_URL: str = Field(
        default="sqlite:///./shopfloor.db",
        description="SQLAlchemy database URL used by the 'database' store backend"
    )
    SUPABASE_URL: Optional[str] = Field(default=None, description="Hosted backend project URL")
    SUPABASE_SERVICE_KEY: Optional[str] = Field(default=None, description="Service role key for REST calls")
    SUPABASE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0, description="HTTP timeout for REST calls")

    @field_validator("STORE_BACKEND")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Only the two known store backends are accepted."""
        v = v.lower().strip()
        if v not in ("database", "supabase"):
            raise ValueError("STORE_BACKEND must be 'database' or 'supabase'")
        return v

    # ===================
    # Inventory Settings
    # ===================
    STOCK_COMPARE_AND_SWAP: bool = Field(
        default=True,
        description="Reject stock writes when the row changed since it was read"
    )
    HISTORY_LIMIT: int = Field(default=50, ge=1, description="History rows returned per item")
    ALL_HISTORY_LIMIT: int = Field(default=100, ge=1, description="History rows returned across items")

    # ===================
    # Security Settings
    # ===================
    JWT_SECRET: str = Field(
        default="change-this-to-the-hosted-backend-jwt-secret",
        description="Shared secret used to verify bearer tokens from the hosted backend"
    )
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_AUDIENCE: Optional[str] = Field(default="authenticated", description="Expected 'aud' claim")

    @field_validator("JWT_SECRET")
    @classmethod
    def warn_default_secret(cls, v: str) -> str:
        """Warn if using default secret key."""
        if "change-this" in v.lower():
            import warnings
            warnings.warn(
                "Using default JWT_SECRET - this is insecure for production!",
                UserWarning
            )
        return v

    # ===================
    # CORS Settings
    # ===================
    ALLOWED_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse comma-separated string to list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ===================
    # Logging Settings
    # ===================
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log format: json or text")
    LOG_FILE: Optional[str] = Field(default=None, description="Log file path (optional)")
    AUDIT_LOG_FILE: Optional[str] = Field(default="./logs/audit.log", description="Audit log file path")

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def uses_supabase(self) -> bool:
        return self.STORE_BACKEND == "supabase"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache ensures settings are only loaded once per process.
    """
    return Settings()


settings = get_settings()
