"""Local data cleanup: re-run the current schema over stored data.

Records written by older builds (or merged before a schema fix) can carry
untrimmed text, stringly numbers or a missing ``bothCrews`` flag. Cleanup
rewrites them in place so the local view and the outbox match what the
schema would produce today.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from crew_sync.core.entities import DocumentKind, Table, job_doc_path
from crew_sync.errors import ValidationError
from crew_sync.sanitize.sanitizer import sanitize
from crew_sync.sanitize.schema import prepare_document, prepare_mutation
from crew_sync.storage.base import LocalStore
from crew_sync.utils.timeutils import Clock, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupSummary:
    """How many stored records cleanup rewrote."""

    jobs_fixed: int = 0
    pending_fixed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"jobsFixed": self.jobs_fixed, "pendingFixed": self.pending_fixed}


def _clean_job(record: dict[str, Any]) -> dict[str, Any]:
    doc_path = job_doc_path(record.get("id", "unknown"))
    try:
        return prepare_document(DocumentKind.JOB, record, doc_path).cleaned
    except ValidationError as e:
        # Keep the record visible; only the generic wire shape is enforced.
        logger.info("Job %s still invalid after cleanup: %s", doc_path, e.reason)
        return sanitize(record, doc_path).cleaned


async def run_local_cleanup(store: LocalStore, *, clock: Clock = now_ms) -> CleanupSummary:
    """Normalize every stored job and queued operation in one transaction.

    A held operation whose payload cleanup rewrote is released for another
    try. Operations that still fail validation are left as they are.
    """
    jobs_fixed = 0
    pending_fixed = 0
    async with store.transaction():
        for record in await store.all(Table.JOBS):
            if "id" not in record:
                continue
            cleaned = _clean_job(record)
            if cleaned != record:
                await store.put(Table.JOBS, str(record["id"]), cleaned)
                jobs_fixed += 1

        for op in await store.list_pending():
            try:
                cleaned_mutation, _ = prepare_mutation(op.mutation)
            except ValidationError:
                continue
            payload = cleaned_mutation.to_payload()
            if payload == op.payload:
                continue
            now = clock()
            due = max(now, op.next_attempt_at) if op.is_held else op.next_attempt_at
            await store.update_pending(
                replace(op, payload=payload, held_reason=None, next_attempt_at=due, updated_at=now)
            )
            pending_fixed += 1

    logger.info("Local cleanup fixed %d jobs and %d pending operations", jobs_fixed, pending_fixed)
    return CleanupSummary(jobs_fixed=jobs_fixed, pending_fixed=pending_fixed)
