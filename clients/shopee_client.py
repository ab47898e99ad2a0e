from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

import httpx
from pydantic import ValidationError

from clients.results import ApiSuccess, Envelope, FailureKind, RequestResult, TransportFailure
from core.credentials import Credentials
from core.signer import sign_partner

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]

AUTH_STATUSES = frozenset({401, 403})
TOO_MANY_REQUESTS = 429


class TokenSource(Protocol):
    @property
    def credentials(self) -> Credentials: ...
    async def refresh_once(self) -> str: ...


@dataclass(frozen=True)
class AuthFlags:
    access_token: bool = True
    shop_id: bool = True


@dataclass(frozen=True)
class SignedRequestSpec:
    method: str
    path: str
    timestamp: int
    auth: AuthFlags
    params: Mapping[str, Any]


@dataclass(frozen=True)
class OutboundRequest:
    method: str
    url: str
    params: Mapping[str, str]
    json: Optional[Dict[str, Any]] = None


@dataclass
class RetryState:
    auth_refreshes: int = 0
    rate_limit_retries: int = 0
    rate_limit_waited_sec: float = 0.0


class CallState(Enum):
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    FATAL = "fatal"


class RetryAction(Enum):
    NONE = "none"
    REFRESH_TOKEN = "refresh_token"
    WAIT = "wait"


@dataclass(frozen=True)
class Transition:
    state: CallState
    action: RetryAction = RetryAction.NONE
    wait_sec: float = 0.0
    kind: Optional[FailureKind] = None
    reason: str = ""


@dataclass(frozen=True)
class RetryPolicy:
    max_auth_refreshes: int = 3
    max_rate_limit_wait_sec: float = 600.0

    def next_transition(
        self, retry: RetryState, status: Optional[int], retry_after: Optional[float]
    ) -> Transition:
        """Decide what follows a failed attempt. Mutates only the call-local ``retry``."""
        if status in AUTH_STATUSES:
            retry.auth_refreshes += 1
            if retry.auth_refreshes > self.max_auth_refreshes:
                return Transition(
                    state=CallState.FATAL,
                    kind=FailureKind.AUTH_ERROR,
                    reason=f"token refresh exceeded {self.max_auth_refreshes} attempt(s)",
                )
            return Transition(state=CallState.ATTEMPTING, action=RetryAction.REFRESH_TOKEN)

        # only consecutive auth failures count towards the limit
        retry.auth_refreshes = 0

        if status == TOO_MANY_REQUESTS:
            retry.rate_limit_retries += 1
            wait_sec = float(retry.rate_limit_retries)
            if retry_after is not None:
                wait_sec = max(retry_after, wait_sec)
            next_total = retry.rate_limit_waited_sec + wait_sec
            if next_total > self.max_rate_limit_wait_sec:
                return Transition(
                    state=CallState.FATAL,
                    kind=FailureKind.TOO_MANY_REQUESTS,
                    reason=(
                        f"429 waited {round(retry.rate_limit_waited_sec)}s in total; "
                        f"limit={round(self.max_rate_limit_wait_sec)}s"
                    ),
                )
            retry.rate_limit_waited_sec = next_total
            return Transition(state=CallState.ATTEMPTING, action=RetryAction.WAIT, wait_sec=wait_sec)

        kind = FailureKind.NETWORK_ERROR if status is None else FailureKind.HTTP_ERROR
        return Transition(state=CallState.FATAL, kind=kind)


class ShopeeClient:
    """Signed request engine for the Shopee Partner API.

    Every call returns exactly one ``RequestResult``: ``ApiSuccess`` carrying the
    envelope untouched (business errors included) or ``TransportFailure``.
    401/403 trigger a coalesced token refresh (at most 3 consecutive), 429 waits
    linearly (lower-bounded by Retry-After) up to 600s in total; anything else is
    returned as a failure without retry.
    """

    def __init__(
        self,
        *,
        token_source: TokenSource,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_sec: float = 10.0,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.time,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._token_source = token_source
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_sec)
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    async def __aenter__(self) -> "ShopeeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def host(self) -> str:
        return self._token_source.credentials.host

    async def get(
        self, url: str, *, auth: AuthFlags = AuthFlags(), params: Optional[Mapping[str, Any]] = None
    ) -> RequestResult:
        return await self.send("GET", url, auth=auth, params=params)

    async def post(
        self, url: str, *, auth: AuthFlags = AuthFlags(), body: Optional[Mapping[str, Any]] = None
    ) -> RequestResult:
        return await self.send("POST", url, auth=auth, params=body)

    async def send(
        self,
        method: str,
        url: str,
        *,
        auth: AuthFlags = AuthFlags(),
        params: Optional[Mapping[str, Any]] = None,
    ) -> RequestResult:
        method = method.upper()
        if method not in ("GET", "POST"):
            raise ValueError(f"unsupported method: {method}")
        path = extract_path(url, self.host)
        retry = RetryState()

        state = CallState.ATTEMPTING
        result: Optional[RequestResult] = None
        while state is CallState.ATTEMPTING:
            credentials = self._token_source.credentials
            spec = SignedRequestSpec(
                method=method,
                path=path,
                timestamp=int(self._clock()),
                auth=auth,
                params=dict(params or {}),
            )
            response, error = await self._attempt(spec, credentials)

            if response is not None and response.is_success:
                result = _parse_success(response)
                state = CallState.SUCCESS if result.ok else CallState.FATAL
                continue

            status = response.status_code if response is not None else None
            retry_after = parse_retry_after(response.headers) if response is not None else None
            transition = self._policy.next_transition(retry, status, retry_after)

            if transition.action is RetryAction.REFRESH_TOKEN:
                self._logger.warning(
                    "shopee auth error: status=%s path=%s refresh=%s/%s",
                    status,
                    path,
                    retry.auth_refreshes,
                    self._policy.max_auth_refreshes,
                )
                await self._token_source.refresh_once()
            elif transition.action is RetryAction.WAIT:
                self._logger.warning(
                    "shopee rate limited: path=%s retry=%s wait_sec=%s waited_total_sec=%s",
                    path,
                    retry.rate_limit_retries,
                    transition.wait_sec,
                    retry.rate_limit_waited_sec,
                )
                await self._sleep(transition.wait_sec)
            elif transition.state is CallState.FATAL:
                result = _failure(transition, status, response, error)

            state = transition.state

        if result is None:
            raise RuntimeError(f"request loop for {path} ended without a result")
        if isinstance(result, TransportFailure):
            self._logger.error(
                "shopee request failed: method=%s path=%s status=%s kind=%s message=%s",
                method,
                path,
                result.status,
                result.kind.value,
                result.message,
            )
        return result

    async def _attempt(
        self, spec: SignedRequestSpec, credentials: Credentials
    ) -> tuple[Optional[httpx.Response], Optional[Exception]]:
        request = build_request(spec, credentials)
        try:
            response = await self._http.request(
                request.method, request.url, params=request.params, json=request.json
            )
        except httpx.HTTPError as exc:
            return None, exc
        return response, None


def extract_path(url: str, host: str) -> str:
    raw_path = url[len(host):] if host and url.startswith(host) else url
    path = raw_path.split("?", 1)[0]
    if not path or not path.startswith("/"):
        raise ValueError(f"could not derive request path: url={url!r} host={host!r}")
    return path


def auth_query(spec: SignedRequestSpec, credentials: Credentials) -> Dict[str, str]:
    access_token = credentials.access_token if spec.auth.access_token else None
    shop_id = credentials.shop_id if spec.auth.shop_id else None
    sign = sign_partner(
        partner_id=credentials.partner_id,
        partner_key=credentials.partner_key,
        path=spec.path,
        timestamp=spec.timestamp,
        access_token=access_token,
        shop_id=shop_id,
    )
    query = {
        "partner_id": str(credentials.partner_id),
        "timestamp": str(spec.timestamp),
        "sign": sign,
    }
    if access_token is not None:
        query["access_token"] = access_token
    if shop_id is not None:
        query["shop_id"] = str(shop_id)
    return query


def build_request(spec: SignedRequestSpec, credentials: Credentials) -> OutboundRequest:
    url = f"{credentials.host}{spec.path}"
    query = auth_query(spec, credentials)
    if spec.method == "GET":
        for key, value in spec.params.items():
            if key in query:
                continue
            encoded = encode_query_value(value)
            if encoded is not None:
                query[key] = encoded
        return OutboundRequest(method="GET", url=url, params=query)
    return OutboundRequest(method="POST", url=url, params=query, json=dict(spec.params))


def encode_query_value(value: Any) -> Optional[str]:
    """Query encoding: lists become ``1,2,3`` (JSON only if they hold objects)."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        if any(isinstance(entry, (dict, list, tuple)) for entry in value):
            return json.dumps(list(value), separators=(",", ":"))
        return ",".join(_scalar(entry) for entry in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    return _scalar(value)


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def _parse_success(response: httpx.Response) -> RequestResult:
    try:
        body = response.json()
    except ValueError:
        return TransportFailure(
            status=response.status_code,
            kind=FailureKind.INVALID_RESPONSE,
            message="response body is not valid JSON",
            response=response.text,
        )
    if not isinstance(body, dict):
        return TransportFailure(
            status=response.status_code,
            kind=FailureKind.INVALID_RESPONSE,
            message="response body is not a JSON object",
            response=body,
        )
    try:
        return ApiSuccess(envelope=Envelope.model_validate(body))
    except ValidationError as exc:
        return TransportFailure(
            status=response.status_code,
            kind=FailureKind.INVALID_RESPONSE,
            message=f"response envelope is malformed: {exc.error_count()} error(s)",
            response=body,
        )


def _failure(
    transition: Transition,
    status: Optional[int],
    response: Optional[httpx.Response],
    error: Optional[Exception],
) -> TransportFailure:
    kind = transition.kind or FailureKind.HTTP_ERROR
    if error is not None:
        message = f"{type(error).__name__}: {error}"
    else:
        message = f"HTTP {status}"
    if transition.reason:
        message = f"{message} ({transition.reason})"
    return TransportFailure(
        status=status,
        kind=kind,
        message=message,
        response=_response_body(response),
    )


def _response_body(response: Optional[httpx.Response]) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
