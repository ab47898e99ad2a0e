from __future__ import annotations

import logging
from typing import Optional

JOB_FORMAT = "%(asctime)s %(levelname)s job_id=%(job_id)s run_id=%(run_id)s %(message)s"
MODULE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
# third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "psycopg.pool")


def get_logger(*, job_id: str, run_id: str, level: Optional[str] = None) -> logging.LoggerAdapter:
    logger = logging.getLogger(f"sync.{job_id}")
    if not logger.handlers:
        logger.setLevel((level or "INFO").upper())
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=JOB_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    return logging.LoggerAdapter(logger, {"job_id": job_id, "run_id": run_id})


def configure_module_logging(level: Optional[str] = None) -> None:
    """Root handler for module loggers of components built without an injected logger."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=MODULE_FORMAT))
        root.addHandler(handler)
    root.setLevel((level or "INFO").upper())
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
