"""Pydantic v2 configuration schema with strict validation."""

from typing import Literal

from pydantic import BaseModel, Field

SENAMHI_FORECAST_URL = "https://www.senamhi.gob.pe/?p=pronostico-meteorologico"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome Safari"
)
ONE_DAY_MS = 24 * 60 * 60 * 1000


class SourceConfig(BaseModel):
    model_config = {"extra": "forbid"}

    url: str = SENAMHI_FORECAST_URL
    user_agent: str = DEFAULT_USER_AGENT
    navigation_timeout_ms: int = Field(default=60_000, gt=0)
    readiness_timeout_ms: int = Field(default=30_000, gt=0)
    readiness_selector: str = "table, tbody.buscar"
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = (
        "domcontentloaded"
    )
    headless: bool = True


class CacheConfig(BaseModel):
    model_config = {"extra": "forbid"}

    path: str = "cache.json"
    ttl_ms: int = Field(default=ONE_DAY_MS, gt=0)


class ServerConfig(BaseModel):
    model_config = {"extra": "forbid"}

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    static_dir: str = "public"
    prewarm: bool = True


class ServiceConfig(BaseModel):
    model_config = {"extra": "forbid"}

    source: SourceConfig = SourceConfig()
    cache: CacheConfig = CacheConfig()
    server: ServerConfig = ServerConfig()
