from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class JobContext:
    job_id: str
    run_id: str
    job_start_at: datetime


def build_context(*, job_id: str, run_id: str) -> JobContext:
    return JobContext(
        job_id=job_id,
        run_id=run_id,
        job_start_at=datetime.now(timezone.utc),
    )
