from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Sequence

from clients.results import Envelope, RequestResult, assert_ok
from clients.shopee_client import AuthFlags

SHOP_AUTH = AuthFlags(access_token=True, shop_id=True)
MAX_DISCOUNT_PAGE_SIZE = 100


class ItemStatus(str, Enum):
    NORMAL = "NORMAL"
    UNLIST = "UNLIST"
    BANNED = "BANNED"
    REVIEWING = "REVIEWING"
    SELLER_DELETE = "SELLER_DELETE"
    SHOPEE_DELETE = "SHOPEE_DELETE"


class DiscountStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    EXPIRED = "expired"
    ALL = "all"


class RequestEngine(Protocol):
    async def send(
        self,
        method: str,
        url: str,
        *,
        auth: AuthFlags = ...,
        params: Optional[Mapping[str, Any]] = None,
    ) -> RequestResult: ...


class ShopeeApi:
    """Partner API endpoints. Every method raises on transport or business errors."""

    def __init__(self, *, engine: RequestEngine) -> None:
        self._engine = engine

    async def get_item_list(
        self,
        *,
        offset: int = 0,
        page_size: int = 50,
        item_status: ItemStatus | str = ItemStatus.NORMAL,
    ) -> Envelope:
        return await self._get(
            "/api/v2/product/get_item_list",
            {"offset": offset, "page_size": page_size, "item_status": _value(item_status)},
        )

    async def get_item_base_info(self, *, item_ids: Sequence[int]) -> Envelope:
        return await self._get(
            "/api/v2/product/get_item_base_info", {"item_id_list": list(item_ids)}
        )

    async def get_model_list(self, *, item_id: int) -> Envelope:
        return await self._get("/api/v2/product/get_model_list", {"item_id": item_id})

    async def get_discount_list(
        self,
        *,
        page_no: int = 1,
        page_size: int = MAX_DISCOUNT_PAGE_SIZE,
        discount_status: DiscountStatus | str = DiscountStatus.ALL,
        update_time_from: Optional[int] = None,
        update_time_to: Optional[int] = None,
    ) -> Envelope:
        params: dict[str, Any] = {
            "discount_status": _value(discount_status),
            "page_no": max(page_no, 1),
            "page_size": min(page_size, MAX_DISCOUNT_PAGE_SIZE),
        }
        if update_time_from:
            params["update_time_from"] = update_time_from
        if update_time_to:
            params["update_time_to"] = update_time_to
        return await self._get("/api/v2/discount/get_discount_list", params)

    async def add_discount(self, *, discount_name: str, start_time: int, end_time: int) -> Envelope:
        return await self._post(
            "/api/v2/discount/add_discount",
            {"discount_name": discount_name, "start_time": start_time, "end_time": end_time},
        )

    async def add_discount_item(
        self, *, discount_id: int, item_list: Sequence[Mapping[str, Any]]
    ) -> Envelope:
        return await self._post(
            "/api/v2/discount/add_discount_item",
            {"discount_id": discount_id, "item_list": [dict(item) for item in item_list]},
        )

    async def delete_discount(self, *, discount_id: int) -> Envelope:
        return await self._post("/api/v2/discount/delete_discount", {"discount_id": discount_id})

    async def delete_discount_item(
        self, *, discount_id: int, item_id: int, model_id: int
    ) -> Envelope:
        return await self._post(
            "/api/v2/discount/delete_discount_item",
            {"discount_id": discount_id, "item_id": item_id, "model_id": model_id},
        )

    async def end_discount(self, *, discount_id: int) -> Envelope:
        return await self._post("/api/v2/discount/end_discount", {"discount_id": discount_id})

    async def update_price(
        self, *, item_id: int, price_list: Sequence[Mapping[str, Any]]
    ) -> Envelope:
        return await self._post(
            "/api/v2/product/update_price",
            {"item_id": item_id, "price_list": [dict(price) for price in price_list]},
        )

    async def _get(self, path: str, params: Mapping[str, Any]) -> Envelope:
        result = await self._engine.send("GET", path, auth=SHOP_AUTH, params=params)
        return assert_ok(result)

    async def _post(self, path: str, body: Mapping[str, Any]) -> Envelope:
        result = await self._engine.send("POST", path, auth=SHOP_AUTH, params=body)
        return assert_ok(result)


def _value(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else value
