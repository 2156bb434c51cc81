from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SEED_PATH = str(Path(__file__).resolve().parent / "data" / "seed.json")


class Settings(BaseSettings):
    app_name: str = Field("SupplyMesh", alias="APP_NAME")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("text", alias="LOG_FORMAT")
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    db_echo: bool = Field(False, alias="DB_ECHO")
    seed_path: str = Field(DEFAULT_SEED_PATH, alias="SEED_PATH")
    cors_allow_origins: str = Field("http://localhost:3000,http://localhost:3001", alias="CORS_ALLOW_ORIGINS")
    request_id_header: str = Field("X-Request-Id", alias="REQUEST_ID_HEADER")
    rate_limit_enabled: bool = Field(False, alias="RATE_LIMIT_ENABLED")
    rate_limit_default: str = Field("120/minute", alias="RATE_LIMIT_DEFAULT")
    otel_enabled: bool = Field(False, alias="OTEL_ENABLED")
    otel_service_name: str = Field("supplymesh", alias="OTEL_SERVICE_NAME")
    otel_exporter_otlp_endpoint: Optional[str] = Field(None, alias="OTEL_EXPORTER_OTLP_ENDPOINT")
    currency_symbol: str = Field("R", alias="CURRENCY_SYMBOL")
    auto_reorder_default_area: str = Field("Unassigned", alias="AUTO_REORDER_DEFAULT_AREA")
    auto_reorder_default_quantity: int = Field(50, alias="AUTO_REORDER_DEFAULT_QUANTITY")
    auto_reorder_lead_hours: int = Field(24, alias="AUTO_REORDER_LEAD_HOURS")
    auto_reorder_suppress_outstanding: bool = Field(True, alias="AUTO_REORDER_SUPPRESS_OUTSTANDING")
    escalate_on_all_declined: bool = Field(True, alias="ESCALATE_ON_ALL_DECLINED")
    delay_email_recipient: str = Field("ops@supplymesh.local", alias="DELAY_EMAIL_RECIPIENT")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


def resolve_env_file() -> Optional[Path]:
    explicit = os.getenv("SUPPLYMESH_ENV_FILE")
    if explicit:
        return Path(explicit)
    default = Path.cwd() / "config" / "api.env"
    if default.exists():
        return default
    return None


def load_settings() -> Settings:
    env_file = resolve_env_file()
    if env_file:
        return Settings(_env_file=str(env_file))
    return Settings()
