from __future__ import annotations

import os
from dataclasses import dataclass

from core.credentials import Credentials
from core.errors import ConfigError

DEFAULT_HOST = "https://partner.shopeemobile.com"
DEFAULT_MARKETPLACE_SCHEMA = "shopee"


@dataclass(frozen=True)
class AppConfig:
    partner_id: int
    partner_key: str
    shop_id: int
    host: str
    token_database_url: str
    token_schema: str
    token_table: str
    marketplaces_database_url: str
    marketplace_schema: str = DEFAULT_MARKETPLACE_SCHEMA
    log_level: str | None = None

    def credentials(self) -> Credentials:
        return Credentials(
            partner_id=self.partner_id,
            partner_key=self.partner_key,
            host=self.host,
            shop_id=self.shop_id,
        )


def load_config() -> AppConfig:
    partner_id = _require_int("PARTNER_ID")
    partner_key = _require("PARTNER_KEY")
    shop_id = _require_int("SHOP_ID")
    host = (os.getenv("HOST") or DEFAULT_HOST).rstrip("/")
    return AppConfig(
        partner_id=partner_id,
        partner_key=partner_key,
        shop_id=shop_id,
        host=host,
        token_database_url=_require("DATABASE_URL"),
        token_schema=_require("DB_SCHEMA"),
        token_table=_require("DB_TABLE"),
        marketplaces_database_url=_require("MARKETPLACES_DATABASE_URL"),
        marketplace_schema=os.getenv("MARKETPLACE_SCHEMA") or DEFAULT_MARKETPLACE_SCHEMA,
        log_level=os.getenv("LOG_LEVEL"),
    )


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"Missing required env var: {name}")
    return value


def _require_int(name: str) -> int:
    value = _require(name)
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"Env var {name} must be an integer, got {value!r}") from exc
