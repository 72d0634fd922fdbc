"""Shared row conversion for ``ai_jobs`` storage adapters."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Final

from stylist_jobs.domain.models import Job

AI_JOBS_TABLE: Final[str] = "ai_jobs"


def utc_now() -> datetime:
    return datetime.now(UTC)


def dump_json(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _load_json(value: Any) -> Any:
    # SQLite hands back TEXT, psycopg2 already decodes JSONB
    if isinstance(value, str):
        return json.loads(value)
    return value


def job_from_row(row: Mapping[str, Any]) -> Job:
    """Build a ``Job`` from a mapping of ``ai_jobs`` columns."""

    return Job.model_validate(
        {
            "id": str(row["id"]),
            "status": row["status"],
            "job_type": row["job_type"],
            "owner_user_id": row["owner_user_id"],
            "input": _load_json(row["input"]) or {},
            "result": _load_json(row["result"]),
            "error": row["error"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
    )


__all__ = ["AI_JOBS_TABLE", "dump_json", "job_from_row", "utc_now"]
