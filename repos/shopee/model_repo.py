from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from psycopg import sql
from psycopg.types.json import Jsonb

from core.normalize import first_mapping, nested, to_bool, to_decimal, to_int


class Cursor(Protocol):
    async def execute(self, query: Any, params: Sequence[object] | None = None) -> Any: ...
    @property
    def rowcount(self) -> int: ...
    async def close(self) -> None: ...


class Connection(Protocol):
    def cursor(self) -> Cursor: ...


UPSERT_MODELS_SQL = """
insert into {table} as existing (
  shop_id, model_id, item_id, model_status, model_sku, gtin_code,
  has_promotion, promotion_id, current_price, original_price, local_price,
  local_promotion_price, total_available_stock, total_reserved_stock,
  raw, last_synced_at
)
select
  %s::bigint, t.model_id, t.item_id, t.model_status, t.model_sku, t.gtin_code,
  t.has_promotion, t.promotion_id, t.current_price, t.original_price, t.local_price,
  t.local_promotion_price, t.total_available_stock, t.total_reserved_stock,
  t.raw, now()
from unnest(
  %s::bigint[], %s::bigint[], %s::text[], %s::text[], %s::text[],
  %s::boolean[], %s::bigint[], %s::numeric[], %s::numeric[], %s::numeric[],
  %s::numeric[], %s::int[], %s::int[],
  %s::jsonb[]
) as t(
  model_id, item_id, model_status, model_sku, gtin_code,
  has_promotion, promotion_id, current_price, original_price, local_price,
  local_promotion_price, total_available_stock, total_reserved_stock,
  raw
)
on conflict (shop_id, model_id) do update set
  item_id = excluded.item_id,
  model_status = excluded.model_status,
  model_sku = excluded.model_sku,
  gtin_code = excluded.gtin_code,
  has_promotion = excluded.has_promotion,
  promotion_id = excluded.promotion_id,
  current_price = excluded.current_price,
  original_price = excluded.original_price,
  local_price = excluded.local_price,
  local_promotion_price = excluded.local_promotion_price,
  total_available_stock = excluded.total_available_stock,
  total_reserved_stock = excluded.total_reserved_stock,
  raw = excluded.raw,
  last_synced_at = now()
"""


class ModelRepo:
    def __init__(self, *, conn: Connection, schema: str = "shopee") -> None:
        self._conn = conn
        self._schema = schema

    def build_statement(self) -> sql.Composed:
        return sql.SQL(UPSERT_MODELS_SQL).format(table=sql.Identifier(self._schema, "models"))

    async def upsert_batch(self, *, shop_id: int, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        cur = self._conn.cursor()
        try:
            await cur.execute(self.build_statement(), build_model_params(shop_id, rows))
            affected = cur.rowcount
        finally:
            await cur.close()
        return affected


def build_model_params(shop_id: int, rows: Sequence[Mapping[str, Any]]) -> tuple[object, ...]:
    prices = [first_mapping(row.get("price_info")) for row in rows]
    return (
        shop_id,
        [row.get("model_id") for row in rows],
        [row.get("item_id") for row in rows],
        [row.get("model_status") for row in rows],
        [row.get("model_sku") for row in rows],
        [row.get("gtin_code") for row in rows],
        [to_bool(row.get("has_promotion")) for row in rows],
        [to_int(row.get("promotion_id")) for row in rows],
        [to_decimal(price.get("current_price")) for price in prices],
        [to_decimal(price.get("original_price")) for price in prices],
        [to_decimal(price.get("local_price")) for price in prices],
        [to_decimal(price.get("local_promotion_price")) for price in prices],
        [
            to_int(nested(row, "stock_info_v2", "summary_info", "total_available_stock"))
            for row in rows
        ],
        [
            to_int(nested(row, "stock_info_v2", "summary_info", "total_reserved_stock"))
            for row in rows
        ],
        [Jsonb(dict(row)) for row in rows],
    )
