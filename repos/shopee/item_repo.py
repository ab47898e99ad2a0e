from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from psycopg import sql
from psycopg.types.json import Jsonb

from core.normalize import to_bool, to_int, to_timestamp


class Cursor(Protocol):
    async def execute(self, query: Any, params: Sequence[object] | None = None) -> Any: ...
    @property
    def rowcount(self) -> int: ...
    async def close(self) -> None: ...


class Connection(Protocol):
    def cursor(self) -> Cursor: ...


UPSERT_ITEMS_SQL = """
insert into {table} as existing (
  shop_id, item_id, item_status, item_name, item_sku, gtin_code,
  has_model, has_promotion, promotion_id, create_time, update_time,
  raw, last_synced_at
)
select
  %s::bigint, t.item_id, t.item_status, t.item_name, t.item_sku, t.gtin_code,
  t.has_model, t.has_promotion, t.promotion_id, t.create_time, t.update_time,
  t.raw, now()
from unnest(
  %s::bigint[], %s::text[], %s::text[], %s::text[], %s::text[],
  %s::boolean[], %s::boolean[], %s::bigint[], %s::timestamptz[], %s::timestamptz[],
  %s::jsonb[]
) as t(
  item_id, item_status, item_name, item_sku, gtin_code,
  has_model, has_promotion, promotion_id, create_time, update_time,
  raw
)
on conflict (shop_id, item_id) do update set
  item_status = excluded.item_status,
  item_name = excluded.item_name,
  item_sku = excluded.item_sku,
  gtin_code = excluded.gtin_code,
  has_model = excluded.has_model,
  has_promotion = excluded.has_promotion,
  promotion_id = excluded.promotion_id,
  create_time = coalesce(excluded.create_time, existing.create_time),
  update_time = greatest(coalesce(excluded.update_time, existing.update_time), existing.update_time),
  raw = excluded.raw,
  last_synced_at = now()
"""


class ItemRepo:
    def __init__(self, *, conn: Connection, schema: str = "shopee") -> None:
        self._conn = conn
        self._schema = schema

    def build_statement(self) -> sql.Composed:
        return sql.SQL(UPSERT_ITEMS_SQL).format(table=sql.Identifier(self._schema, "items"))

    async def upsert_batch(self, *, shop_id: int, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        cur = self._conn.cursor()
        try:
            await cur.execute(self.build_statement(), build_item_params(shop_id, rows))
            affected = cur.rowcount
        finally:
            await cur.close()
        return affected


def build_item_params(shop_id: int, rows: Sequence[Mapping[str, Any]]) -> tuple[object, ...]:
    return (
        shop_id,
        [row.get("item_id") for row in rows],
        [row.get("item_status") for row in rows],
        [row.get("item_name") for row in rows],
        [row.get("item_sku") for row in rows],
        [row.get("gtin_code") for row in rows],
        [to_bool(row.get("has_model")) for row in rows],
        [to_bool(row.get("has_promotion")) for row in rows],
        [to_int(row.get("promotion_id")) for row in rows],
        [to_timestamp(row.get("create_time")) for row in rows],
        [to_timestamp(row.get("update_time")) for row in rows],
        [Jsonb(dict(row)) for row in rows],
    )
