# job_status_manager.py
"""
Centralized Job Status Management

STATUS FLOW:
  QUEUED → PROCESSING → DONE
     │          ↘ FAILED
     ├──────────→ DONE      (complete without an explicit start)
     └──────────→ FAILED

  force-fail: any state → FAILED (administrative / crash recovery)

Every transition is a single UPDATE guarded by the expected current status,
so concurrent requests against one job serialize at the database: exactly
one caller sees rowcount == 1, everyone else observes the new state.
"""

import logging
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from database import db_commit, db_execute, db_rollback

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


_TRANSITIONS = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# Every status needs an entry; a new enum member without one fails at import
if set(_TRANSITIONS) != set(JobStatus):
    missing = set(JobStatus) - set(_TRANSITIONS)
    raise RuntimeError(f"Job transition table is missing states: {sorted(m.value for m in missing)}")

# States a normal completion may start from
COMPLETABLE = (JobStatus.QUEUED, JobStatus.PROCESSING)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Regular (non-forced) edge check"""
    return target in _TRANSITIONS[JobStatus(current)]


class JobStatusManager:
    """Guarded status writes for the jobs table"""

    @staticmethod
    async def _guarded_update(
        db: Session,
        job_id: str,
        target: JobStatus,
        expected: Optional[Iterable[JobStatus]],
        values: dict,
    ) -> bool:
        from models import Job, utcnow

        stmt = update(Job).where(Job.id == job_id)
        if expected is not None:
            stmt = stmt.where(Job.status.in_([JobStatus(s).value for s in expected]))
        stmt = stmt.values(status=target.value, updated_at=utcnow(), **values)
        stmt = stmt.execution_options(synchronize_session=False)

        try:
            result = await db_execute(db, stmt)
            await db_commit(db)
        except Exception:
            await db_rollback(db)
            raise

        won = result.rowcount == 1
        if won:
            logger.info(f"Job {job_id} → {target.value}")
        else:
            logger.info(f"Job {job_id} → {target.value} lost the guard (expected {expected})")
        return won

    @staticmethod
    async def transition(
        db: Session,
        job_id: str,
        target: JobStatus,
        expected: Iterable[JobStatus],
        **values,
    ) -> bool:
        """
        Move job_id to target if its current status is one of expected.

        Returns False when another writer got there first.
        """
        expected = tuple(JobStatus(s) for s in expected)
        for current in expected:
            if not can_transition(current, target):
                raise ValueError(f"Illegal job transition {current.value} → {target.value}")
        return await JobStatusManager._guarded_update(db, job_id, target, expected, values)

    @staticmethod
    async def mark_processing(db: Session, job_id: str) -> bool:
        return await JobStatusManager.transition(
            db, job_id, JobStatus.PROCESSING, (JobStatus.QUEUED,)
        )

    @staticmethod
    async def mark_done(db: Session, job_id: str, result_ref: str, duration_sec: Optional[float]) -> bool:
        return await JobStatusManager.transition(
            db, job_id, JobStatus.DONE, COMPLETABLE,
            result_ref=result_ref, duration_sec=duration_sec, error=None,
        )

    @staticmethod
    async def mark_failed(db: Session, job_id: str, message: str) -> bool:
        return await JobStatusManager.transition(
            db, job_id, JobStatus.FAILED, COMPLETABLE,
            error=message, result_ref=None,
        )

    @staticmethod
    async def force_fail(db: Session, job_id: str, message: str) -> bool:
        """Unconditional: any state, including DONE, goes to FAILED"""
        return await JobStatusManager._guarded_update(
            db, job_id, JobStatus.FAILED, None,
            {"error": message, "result_ref": None},
        )


__all__ = ['JobStatus', 'JobStatusManager', 'COMPLETABLE', 'can_transition']
