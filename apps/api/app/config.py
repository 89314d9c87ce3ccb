from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "delivery-hub-jwt-secret"
ALLOWED_APP_MODES = {"development", "pilot", "production"}
MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    app_name: str = "Delivery Hub"
    app_mode: str = Field(default="development", validation_alias="APP_MODE")

    database_url: str = Field(
        default="sqlite+pysqlite:///./test.db",
        validation_alias="DELIVERY_DATABASE_URL",
    )
    auto_create_schema: bool = Field(default=True, validation_alias="AUTO_CREATE_SCHEMA")
    cors_allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    jwt_secret: str = DEFAULT_JWT_SECRET
    allowed_roles: str = "CUSTOMER,OPS,ADMIN"
    enable_test_auth_bypass: bool = False
    testing: bool = Field(default=False, validation_alias="DELIVERY_TESTING")

    webhook_token: str = Field(default="", validation_alias="DELIVERY_WEBHOOK_TOKEN")
    api_key_header: str = Field(
        default="x-api-key",
        validation_alias="DELIVERY_HUB_API_KEY_HEADER",
    )
    default_db: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DELIVERY_HUB_DB", "ODOO_DB", "DELIVERY_DB"),
    )
    provider_timeout_ms: int = 15000
    batch_max_orders: int = 200

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("app_mode")
    @classmethod
    def validate_app_mode(cls, value: str) -> str:
        mode = value.lower().strip()
        if mode not in ALLOWED_APP_MODES:
            allowed = ", ".join(sorted(ALLOWED_APP_MODES))
            raise ValueError(f"APP_MODE must be one of: {allowed}")
        return mode


settings = Settings()


def is_production_mode() -> bool:
    return settings.app_mode == "production"


def allowed_origins() -> list[str]:
    return [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]


def allowed_roles_list() -> list[str]:
    return [value.strip() for value in settings.allowed_roles.split(",") if value.strip()]


def ensure_secure_runtime_settings() -> None:
    """Fail fast when production-like runtime uses insecure defaults."""
    if not settings.testing and settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise RuntimeError(
            "JWT_SECRET must be set to a non-default value when DELIVERY_TESTING is false"
        )
    if not settings.testing and len(settings.jwt_secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(
            "JWT_SECRET must be at least "
            f"{MIN_SECRET_LENGTH} characters when DELIVERY_TESTING is false"
        )
    if is_production_mode() and settings.enable_test_auth_bypass:
        raise RuntimeError("ENABLE_TEST_AUTH_BYPASS must be disabled in APP_MODE=production")
    if not settings.testing and _is_sqlite_url(settings.database_url):
        raise RuntimeError("DELIVERY_DATABASE_URL must use postgres when DELIVERY_TESTING is false")


def _is_sqlite_url(database_url: str) -> bool:
    value = database_url.strip().lower()
    return value.startswith("sqlite")
