from __future__ import annotations

import asyncio
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

import psycopg  # noqa: E402
from psycopg import sql  # noqa: E402

from repos.db import close_pools, create_pool  # noqa: E402
from repos.shopee.item_repo import ItemRepo  # noqa: E402
from repos.shopee.model_repo import ModelRepo  # noqa: E402
from services.bulk_upsert import BulkUpsertBatcher  # noqa: E402

DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not DATABASE_URL, reason="TEST_DATABASE_URL is not set"),
]

DDL = """
create schema {schema};
create table {items} (
  shop_id bigint not null,
  item_id bigint not null,
  item_status text,
  item_name text,
  item_sku text,
  gtin_code text,
  has_model boolean,
  has_promotion boolean,
  promotion_id bigint,
  create_time timestamptz,
  update_time timestamptz,
  raw jsonb,
  last_synced_at timestamptz,
  unique (shop_id, item_id)
);
create table {models} (
  shop_id bigint not null,
  model_id bigint not null,
  item_id bigint,
  model_status text,
  model_sku text,
  gtin_code text,
  has_promotion boolean,
  promotion_id bigint,
  current_price numeric,
  original_price numeric,
  local_price numeric,
  local_promotion_price numeric,
  total_available_stock int,
  total_reserved_stock int,
  raw jsonb,
  last_synced_at timestamptz,
  unique (shop_id, model_id)
);
"""

SHOP_ID = 998877


async def _with_schema(body):
    schema = f"sync_test_{uuid.uuid4().hex[:8]}"
    async with await psycopg.AsyncConnection.connect(DATABASE_URL, autocommit=True) as conn:
        await conn.execute(
            sql.SQL(DDL).format(
                schema=sql.Identifier(schema),
                items=sql.Identifier(schema, "items"),
                models=sql.Identifier(schema, "models"),
            )
        )
    pool = await create_pool(database_url=DATABASE_URL)
    try:
        return await body(pool, schema)
    finally:
        await close_pools(pool)
        async with await psycopg.AsyncConnection.connect(DATABASE_URL, autocommit=True) as conn:
            await conn.execute(
                sql.SQL("drop schema {} cascade").format(sql.Identifier(schema))
            )


async def _fetch(pool, query, params=()):
    async with pool.connection() as conn:
        cur = await conn.execute(query, params)
        return await cur.fetchall()


def _factory(repo_cls, schema):
    return lambda conn: repo_cls(conn=conn, schema=schema)


@pytest.mark.integration
def test_item_upsert_is_idempotent() -> None:
    items = [
        {"item_id": 1, "item_status": "NORMAL", "item_name": "a", "has_model": True, "update_time": 1700000000},
        {"item_id": 2, "item_status": "UNLIST", "item_name": "b", "has_model": 0, "update_time": 1700000100},
    ]

    async def body(pool, schema):
        batcher = BulkUpsertBatcher(pool=pool)
        query = sql.SQL(
            "select item_id, item_status, item_name, has_model, update_time, raw from {} order by item_id"
        ).format(sql.Identifier(schema, "items"))
        await batcher.upsert(items, repo_factory=_factory(ItemRepo, schema), shop_id=SHOP_ID)
        first = await _fetch(pool, query)
        await batcher.upsert(items, repo_factory=_factory(ItemRepo, schema), shop_id=SHOP_ID)
        second = await _fetch(pool, query)
        return first, second

    first, second = asyncio.run(_with_schema(body))

    assert first == second
    assert [row[0] for row in first] == [1, 2]
    assert first[0][3] is True
    assert first[1][3] is False
    assert first[0][5]["item_name"] == "a"


@pytest.mark.integration
def test_item_merge_keeps_create_time_and_latest_update_time() -> None:
    async def body(pool, schema):
        batcher = BulkUpsertBatcher(pool=pool)
        factory = _factory(ItemRepo, schema)
        await batcher.upsert(
            [{"item_id": 7, "create_time": 1600000000, "update_time": 1700000000}],
            repo_factory=factory,
            shop_id=SHOP_ID,
        )
        await batcher.upsert(
            [{"item_id": 7, "create_time": 0, "update_time": 1650000000, "item_name": "renamed"}],
            repo_factory=factory,
            shop_id=SHOP_ID,
        )
        query = sql.SQL(
            "select item_name, create_time, update_time from {} where shop_id = %s and item_id = %s"
        ).format(sql.Identifier(schema, "items"))
        return await _fetch(pool, query, (SHOP_ID, 7))

    rows = asyncio.run(_with_schema(body))

    assert rows == [
        (
            "renamed",
            datetime.fromtimestamp(1600000000, tz=timezone.utc),
            datetime.fromtimestamp(1700000000, tz=timezone.utc),
        )
    ]


@pytest.mark.integration
def test_model_upsert_flattens_price_and_stock() -> None:
    models = [
        {
            "model_id": 501,
            "item_id": 7,
            "price_info": [{"current_price": 12.5, "original_price": 20}],
            "stock_info_v2": {"summary_info": {"total_available_stock": 3, "total_reserved_stock": 1}},
        }
    ]

    async def body(pool, schema):
        batcher = BulkUpsertBatcher(pool=pool)
        factory = _factory(ModelRepo, schema)
        await batcher.upsert(models, repo_factory=factory, shop_id=SHOP_ID)
        await batcher.upsert(models, repo_factory=factory, shop_id=SHOP_ID)
        query = sql.SQL(
            "select item_id, current_price, original_price, total_available_stock, total_reserved_stock"
            " from {}"
        ).format(sql.Identifier(schema, "models"))
        return await _fetch(pool, query)

    rows = asyncio.run(_with_schema(body))

    assert len(rows) == 1
    item_id, current, original, available, reserved = rows[0]
    assert item_id == 7
    assert float(current) == 12.5
    assert float(original) == 20
    assert (available, reserved) == (3, 1)
