from __future__ import annotations

import argparse
import asyncio
import signal
import time
import uuid
from typing import Any, Dict, Optional, Sequence

from dotenv import load_dotenv

from clients.shopee_api import ItemStatus, ShopeeApi
from clients.shopee_client import ShopeeClient
from clients.token_refresh import TokenRefreshCoordinator
from core.config import AppConfig, load_config
from core.errors import ConfigError
from core.logging import configure_module_logging, get_logger
from repos.db import close_pools, create_pool
from repos.token_repo import TokenRepo
from services.bulk_upsert import BulkUpsertBatcher
from services.catalog_sync import DEFAULT_BATCH_SIZE, CatalogSyncService
from services.context import build_context
from services.pagination import CatalogPaginator

JOB_ID = "JOB-SHOPEE-CATALOG"


async def run_job(
    *,
    config: AppConfig,
    run_id: Optional[str] = None,
    statuses: Optional[Sequence[ItemStatus]] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Dict[str, Any]:
    ctx = build_context(job_id=JOB_ID, run_id=run_id or uuid.uuid4().hex)
    logger = get_logger(job_id=JOB_ID, run_id=ctx.run_id, level=config.log_level)
    started = time.monotonic()

    token_pool = None
    catalog_pool = None
    try:
        token_pool = await create_pool(database_url=config.token_database_url)
        catalog_pool = await create_pool(database_url=config.marketplaces_database_url)

        token_repo = TokenRepo(
            pool=token_pool, schema=config.token_schema, table=config.token_table
        )
        coordinator = TokenRefreshCoordinator(
            fetch_token=token_repo.fetch_access_token,
            initial=config.credentials(),
            logger=logger,
        )
        await coordinator.load()
        logger.info("access token loaded from token store")

        async with ShopeeClient(token_source=coordinator, logger=logger) as client:
            api = ShopeeApi(engine=client)
            service = CatalogSyncService(
                api=api,
                paginator=CatalogPaginator(api=api, logger=logger),
                batcher=BulkUpsertBatcher(pool=catalog_pool, logger=logger),
                shop_id=config.shop_id,
                schema=config.marketplace_schema,
                batch_size=batch_size,
                logger=logger,
            )
            summary = await service.run(statuses=list(statuses or ItemStatus))
        logger.info(
            "job done: summary=%s elapsed_sec=%.2f", summary, time.monotonic() - started
        )
        return summary
    finally:
        logger.info("closing connection pools")
        await close_pools(token_pool, catalog_pool)


async def _run_until_signal(**kwargs: Any) -> Dict[str, Any]:
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(run_job(**kwargs))
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError):
            # signal handlers are unavailable on some platforms and outside the main thread
            pass
    return await task


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=f"{JOB_ID} Shopee catalog sync")
    parser.add_argument("--run-id", dest="run_id", default=None)
    parser.add_argument(
        "--status",
        dest="statuses",
        action="append",
        choices=[status.value for status in ItemStatus],
        default=None,
        help="item status partition to list (repeatable, default: all)",
    )
    parser.add_argument("--batch-size", dest="batch_size", type=int, default=DEFAULT_BATCH_SIZE)
    args = parser.parse_args(argv)

    load_dotenv()
    try:
        config = load_config()
    except ConfigError as exc:
        logger = get_logger(job_id=JOB_ID, run_id=args.run_id or "-")
        logger.error("invalid configuration: %s", exc)
        return 1

    configure_module_logging(config.log_level)

    statuses = [ItemStatus(value) for value in args.statuses] if args.statuses else None
    try:
        asyncio.run(
            _run_until_signal(
                config=config,
                run_id=args.run_id,
                statuses=statuses,
                batch_size=args.batch_size,
            )
        )
    except asyncio.CancelledError:
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
