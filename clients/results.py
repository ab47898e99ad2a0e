from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator

from core.errors import ShopeeBusinessError, ShopeeTransportError


class Envelope(BaseModel):
    """Uniform response wrapper of every Partner API call.

    ``error`` is empty on success; a non-empty value is a business error even
    when the HTTP status was 2xx.
    """

    model_config = ConfigDict(extra="allow")

    error: str = ""
    message: str = ""
    warning: Any = None
    request_id: str = ""
    response: Any = None
    debug_message: Optional[str] = None

    @field_validator("error", "message", "request_id", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_business_error(self) -> bool:
        return bool(self.error)


class FailureKind(str, Enum):
    AUTH_ERROR = "AUTH_ERROR"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    HTTP_ERROR = "HTTP_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"


@dataclass(frozen=True)
class ApiSuccess:
    envelope: Envelope
    ok: Literal[True] = True


@dataclass(frozen=True)
class TransportFailure:
    status: Optional[int]
    kind: FailureKind
    message: str
    response: Any = None
    ok: Literal[False] = False


RequestResult = Union[ApiSuccess, TransportFailure]


def assert_ok(result: RequestResult) -> Envelope:
    if isinstance(result, TransportFailure):
        status = result.status if result.status is not None else ""
        raise ShopeeTransportError(
            f"[Shopee][HTTP] {status} {result.kind.value}: {result.message}".replace("  ", " "),
            status=result.status,
            kind=result.kind.value,
            response=result.response,
        )
    envelope = result.envelope
    if envelope.is_business_error:
        raise ShopeeBusinessError(
            f"[Shopee][API] {envelope.error}: {envelope.message or 'no message'}",
            error=envelope.error,
            request_id=envelope.request_id,
        )
    return envelope


def unwrap(result: RequestResult) -> Any:
    return assert_ok(result).response
