from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for catalog sync domain errors."""


class ConfigError(SyncError):
    """Missing or invalid process configuration."""


class ShopeeError(SyncError):
    """Shopee Partner API related errors."""


class ShopeeTransportError(ShopeeError):
    """Network failure or non-2xx HTTP response that was not recovered."""

    def __init__(self, message: str, *, status: int | None, kind: str, response: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.kind = kind
        self.response = response


class ShopeeBusinessError(ShopeeError):
    """2xx response whose envelope carries a non-empty error field."""

    def __init__(self, message: str, *, error: str, request_id: str = "") -> None:
        super().__init__(message)
        self.error = error
        self.request_id = request_id


class TokenNotFoundError(SyncError):
    """Token store has no access token for the provider."""


class DbError(SyncError):
    """Database related errors."""


class DbTransientError(DbError):
    """Connection reset, pipe, or timeout errors."""


class DbLogicError(DbError):
    """Constraint violations or malformed queries."""
