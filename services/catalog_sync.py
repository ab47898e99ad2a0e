from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Protocol, Sequence

from clients.results import Envelope
from core.batching import chunk
from core.concurrency import gather_or_cancel
from core.normalize import to_bool
from repos.shopee.item_repo import ItemRepo
from repos.shopee.model_repo import ModelRepo
from services.bulk_upsert import BulkUpsertBatcher
from services.pagination import CatalogPaginator

BASE_INFO_IDS_PER_CALL = 50
BASE_INFO_CONCURRENCY = 40
MODEL_LIST_CONCURRENCY = 80
DEFAULT_BATCH_SIZE = 1000


class CatalogApi(Protocol):
    async def get_item_base_info(self, *, item_ids: Sequence[int]) -> Envelope: ...
    async def get_model_list(self, *, item_id: int) -> Envelope: ...


class CatalogSyncService:
    def __init__(
        self,
        *,
        api: CatalogApi,
        paginator: CatalogPaginator,
        batcher: BulkUpsertBatcher,
        shop_id: int,
        schema: str = "shopee",
        batch_size: int = DEFAULT_BATCH_SIZE,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._api = api
        self._paginator = paginator
        self._batcher = batcher
        self._shop_id = shop_id
        self._schema = schema
        self._batch_size = batch_size
        self._logger = logger or logging.getLogger(__name__)

    async def run(self, *, statuses: Iterable[Any]) -> Dict[str, int]:
        item_ids = await self._paginator.list_all_ids(statuses)
        self._logger.info("catalog ids listed: count=%s sample=%s", len(item_ids), item_ids[:3])

        items = await self.fetch_base_info(item_ids)
        with_models = [
            item["item_id"]
            for item in items
            if item.get("item_id") is not None and to_bool(item.get("has_model"))
        ]
        self._logger.info(
            "catalog base info fetched: items=%s with_models=%s", len(items), len(with_models)
        )

        models = await self.fetch_models(with_models)
        self._logger.info("catalog models fetched: models=%s", len(models))

        items_upserted = await self._batcher.upsert(
            items,
            repo_factory=self._repo_factory(ItemRepo),
            shop_id=self._shop_id,
            batch_size=self._batch_size,
        )
        self._logger.info("items upserted: rows=%s affected=%s", len(items), items_upserted)
        models_upserted = await self._batcher.upsert(
            models,
            repo_factory=self._repo_factory(ModelRepo),
            shop_id=self._shop_id,
            batch_size=self._batch_size,
        )
        self._logger.info("models upserted: rows=%s affected=%s", len(models), models_upserted)

        return {
            "ids": len(item_ids),
            "items": len(items),
            "items_with_models": len(with_models),
            "models": len(models),
            "items_upserted": items_upserted,
            "models_upserted": models_upserted,
        }

    async def fetch_base_info(self, item_ids: Sequence[int]) -> List[Mapping[str, Any]]:
        id_chunks = chunk(item_ids, BASE_INFO_IDS_PER_CALL)
        items: List[Mapping[str, Any]] = []
        for start in range(0, len(id_chunks), BASE_INFO_CONCURRENCY):
            group = id_chunks[start : start + BASE_INFO_CONCURRENCY]
            envelopes = await gather_or_cancel(
                *(self._api.get_item_base_info(item_ids=ids) for ids in group)
            )
            for envelope in envelopes:
                items.extend(_response_list(envelope, "item_list"))
            self._logger.info(
                "base info group done: chunks=%s..%s", start, start + len(group) - 1
            )
        return items

    async def fetch_models(self, item_ids: Sequence[int]) -> List[Mapping[str, Any]]:
        models: List[Mapping[str, Any]] = []
        for group in chunk(item_ids, MODEL_LIST_CONCURRENCY):
            per_item = await gather_or_cancel(*(self._models_for(item_id) for item_id in group))
            for item_models in per_item:
                models.extend(item_models)
        return models

    async def _models_for(self, item_id: int) -> List[Mapping[str, Any]]:
        envelope = await self._api.get_model_list(item_id=item_id)
        # model records do not carry their parent id
        return [{**model, "item_id": item_id} for model in _response_list(envelope, "model")]

    def _repo_factory(self, repo_cls: Callable[..., Any]) -> Callable[[Any], Any]:
        schema = self._schema

        def factory(conn: Any) -> Any:
            return repo_cls(conn=conn, schema=schema)

        return factory


def _response_list(envelope: Envelope, key: str) -> List[Mapping[str, Any]]:
    response = envelope.response if isinstance(envelope.response, dict) else {}
    entries = response.get(key) or []
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, Mapping)]
