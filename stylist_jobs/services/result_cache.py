"""Ephemeral hand-off cache for freshly generated results.

Bridges the gap between a job succeeding and storage reflecting the new asset:
the generation flow stores the decoded payload, and the next screen reading the
same subject consumes it once. Nothing is persisted; a miss means the caller
loads the authoritative value from storage.

Keys are ``<subject_id>:<job_id>``, or ``<subject_id>:<trace_id>`` when the
reader will only know the client trace id.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Final

from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.exceptions import ValidationError
from stylist_jobs.domain.models import CacheEntry, GenerationPayload
from stylist_jobs.domain.polling_constants import DEFAULT_RESULT_CACHE_TTL_SECONDS
from stylist_jobs.observability.metrics import RESULT_CACHE_LOOKUPS_TOTAL

logger = get_logger(__name__)

_KEY_SEPARATOR: Final[str] = ":"

Clock = Callable[[], float]


def _cache_key(subject_id: str, discriminator: str) -> str:
    return f"{subject_id}{_KEY_SEPARATOR}{discriminator}"


class GenerationResultCache:
    """In-memory, TTL-bounded, consume-on-read store of pending results."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_RESULT_CACHE_TTL_SECONDS,
        *,
        clock: Clock = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValidationError("ttl_seconds must be positive")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def put(
        self,
        subject_id: str,
        job_id: str,
        payload: GenerationPayload,
        created_at: float | None = None,
        trace_id: str | None = None,
    ) -> None:
        """Store a result, replacing any entry at the same key."""

        key = _cache_key(subject_id, trace_id if trace_id else job_id)
        entry = CacheEntry(
            subject_id=subject_id,
            job_id=job_id,
            payload=payload,
            created_at=self._clock() if created_at is None else created_at,
            trace_id=trace_id,
        )

        with self._lock:
            self._entries[key] = entry
            evicted = self._evict_stale_locked()

        logger.debug(
            "result_cache_put",
            subject_id=subject_id,
            job_id=job_id,
            trace_id=trace_id,
            cache_key=key,
            evicted=evicted,
        )

    def get(
        self,
        subject_id: str,
        job_id: str | None = None,
        trace_id: str | None = None,
    ) -> GenerationPayload | None:
        """Consume the payload matching the lookup, or return None.

        Lookup order: job key, trace key, then the first live entry for the
        subject. Only an exact hit removes the entry; a job or trace mismatch
        leaves it for the reader it belongs to.
        """

        with self._lock:
            key = self._resolve_key_locked(subject_id, job_id, trace_id)
            entry = self._entries.get(key) if key is not None else None

            if entry is None:
                outcome = "miss"
            elif self._is_expired(entry):
                del self._entries[key]  # type: ignore[arg-type]
                entry = None
                outcome = "expired"
            elif job_id and entry.job_id != job_id:
                entry = None
                outcome = "mismatch"
            elif trace_id and entry.trace_id and entry.trace_id != trace_id:
                entry = None
                outcome = "mismatch"
            else:
                del self._entries[key]  # type: ignore[arg-type]
                outcome = "hit"

        RESULT_CACHE_LOOKUPS_TOTAL.labels(outcome=outcome).inc()
        logger.debug(
            f"result_cache_{outcome}",
            subject_id=subject_id,
            job_id=job_id,
            trace_id=trace_id,
            cache_key=key,
        )

        if entry is None:
            return None
        return entry.payload

    def _resolve_key_locked(
        self, subject_id: str, job_id: str | None, trace_id: str | None
    ) -> str | None:
        if job_id:
            return _cache_key(subject_id, job_id)
        if trace_id:
            return _cache_key(subject_id, trace_id)

        prefix = _cache_key(subject_id, "")
        for key, entry in self._entries.items():
            if key.startswith(prefix) and not self._is_expired(entry):
                return key
        return None

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at >= self._ttl_seconds

    def _evict_stale_locked(self) -> int:
        stale_keys = [
            key for key, entry in self._entries.items() if self._is_expired(entry)
        ]
        for key in stale_keys:
            del self._entries[key]
        return len(stale_keys)


__all__ = ["GenerationResultCache"]
