from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Set

from clients.results import Envelope
from core.batching import group_sizes
from core.concurrency import gather_or_cancel

DEFAULT_PAGE_SIZE = 100
DEFAULT_GROUP_SIZE = 10


class ItemListApi(Protocol):
    async def get_item_list(self, *, offset: int, page_size: int, item_status: Any) -> Envelope: ...


class MalformedPageError(Exception):
    """Page response whose item list is not a list."""


class CatalogPaginator:
    """Lists every item id across status partitions.

    Each status fetches page 0 to learn ``total_count``, then the remaining
    pages in groups of ``group_size`` concurrent requests, one group at a time.
    Statuses run concurrently with each other; the result is the union of ids.
    """

    def __init__(
        self,
        *,
        api: ItemListApi,
        page_size: int = DEFAULT_PAGE_SIZE,
        group_size: int = DEFAULT_GROUP_SIZE,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        if page_size <= 0 or group_size <= 0:
            raise ValueError("page_size and group_size must be positive")
        self._api = api
        self._page_size = page_size
        self._group_size = group_size
        self._logger = logger or logging.getLogger(__name__)

    async def list_all_ids(self, statuses: Iterable[Any]) -> List[int]:
        results = await gather_or_cancel(*(self.list_status_ids(status) for status in statuses))
        unique: Set[int] = set()
        for ids in results:
            unique.update(ids)
        return list(unique)

    async def list_status_ids(self, status: Any) -> List[int]:
        label = getattr(status, "value", status)
        first = await self._fetch_page(status, 0)
        try:
            first_items = _page_items(first)
        except MalformedPageError:
            self._logger.error(
                "get_item_list returned a malformed item list: status=%s page=0 response=%s",
                label,
                first.response,
            )
            return []

        ids = _item_ids(first_items)
        total_count = _total_count(first)
        remaining_pages = max(math.ceil(total_count / self._page_size) - 1, 0)
        groups = group_sizes(remaining_pages, self._group_size)
        self._logger.info(
            "pagination start: status=%s total_count=%s remaining_pages=%s groups=%s",
            label,
            total_count,
            remaining_pages,
            len(groups),
        )

        page_cursor = 1
        for group_index, size in enumerate(groups, start=1):
            pages = range(page_cursor, page_cursor + size)
            envelopes = await gather_or_cancel(*(self._fetch_page(status, page) for page in pages))
            for page, envelope in zip(pages, envelopes):
                try:
                    items = _page_items(envelope)
                except MalformedPageError:
                    self._logger.error(
                        "get_item_list returned a malformed item list: status=%s page=%s response=%s",
                        label,
                        page,
                        envelope.response,
                    )
                    return ids
                ids.extend(_item_ids(items))
            self._logger.info(
                "pagination group done: status=%s group=%s/%s pages=%s",
                label,
                group_index,
                len(groups),
                size,
            )
            page_cursor += size
        return ids

    async def _fetch_page(self, status: Any, page: int) -> Envelope:
        return await self._api.get_item_list(
            offset=page * self._page_size, page_size=self._page_size, item_status=status
        )


def _page_items(envelope: Envelope) -> Sequence[Any]:
    response = envelope.response if isinstance(envelope.response, dict) else {}
    items = response.get("item")
    if items is None:
        return []
    if not isinstance(items, list):
        raise MalformedPageError(type(items).__name__)
    return items


def _item_ids(items: Sequence[Any]) -> List[int]:
    ids: List[int] = []
    for item in items:
        item_id: Optional[Any] = item.get("item_id") if isinstance(item, dict) else None
        if item_id is not None:
            ids.append(int(item_id))
    return ids


def _total_count(envelope: Envelope) -> int:
    response = envelope.response if isinstance(envelope.response, dict) else {}
    try:
        return int(response.get("total_count") or 0)
    except (TypeError, ValueError):
        return 0
