# job_service.py - job lifecycle: create, start, complete, fail, delete
"""
Owns every job edge. Status writes go through JobStatusManager (guarded
UPDATEs); completes of one job are additionally serialized in-process so a
duplicate client retry waits for the first attempt and then sees its result.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import delete as sa_delete, func, or_, select
from sqlalchemy.orm import Session

from auth import Caller, assert_caller_may_access, assert_owner
from config.constants import PRESET_IDS
from config.limits import JOBS
from credit_ledger import CreditLedger
from database import db_call, db_commit, db_execute, db_rollback
from errors import (
    InsufficientCredits,
    InvalidInput,
    InvalidState,
    NotFound,
    RateLimited,
    StorageError,
    SynthesisError,
    UpstreamFailure,
    run_best_effort,
)
from job_status_manager import COMPLETABLE, JobStatus, JobStatusManager
from models import Job, Track, User
from storage import StorageGateway, is_absolute_http_url, key_for_track
from title import make_title_from_prompt, truncate
from track_reconciler import TrackReconciler, clamp_take

logger = logging.getLogger(__name__)

DEFAULT_FAIL_REASON = "Marked as failed"


class JobLocks:
    """Per-job asyncio locks, dropped once nobody holds or waits on them"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, job_id: str):
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._refs[job_id] = self._refs.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[job_id] -= 1
            if self._refs[job_id] == 0:
                self._refs.pop(job_id, None)
                self._locks.pop(job_id, None)

    def __len__(self):
        return len(self._locks)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def first_known(*values):
    for value in values:
        if value is not None:
            return value
    return None


class JobService:
    def __init__(self, storage: StorageGateway, synthesizer, duration_detector=None,
                 reconciler: Optional[TrackReconciler] = None):
        self.storage = storage
        self.synthesizer = synthesizer
        self.duration_detector = duration_detector
        self.reconciler = reconciler or TrackReconciler(storage)
        self.locks = JobLocks()

    async def _reload(self, db: Session, job: Job) -> Job:
        await db_call(db.refresh, job)
        return job

    async def _owned_job(self, db: Session, job_id: str, user: User) -> Job:
        job = await db_call(db.get, Job, job_id)
        return assert_owner(job, user.id, "Job")

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    @staticmethod
    def validate_create(prompt: Optional[str], preset: Optional[str], title: Optional[str],
                        duration_sec: Optional[int]) -> dict:
        prompt = (prompt or "").strip()
        if len(prompt) < JOBS.PROMPT_MIN_CHARS:
            raise InvalidInput(f"Prompt must be at least {JOBS.PROMPT_MIN_CHARS} characters")

        preset = (preset or "").strip() or None
        if preset is not None and preset not in PRESET_IDS:
            raise InvalidInput(f"Unknown preset: {preset}")

        if duration_sec is not None:
            if not (JOBS.DURATION_MIN_SEC <= duration_sec <= JOBS.DURATION_MAX_SEC):
                raise InvalidInput(
                    f"durationSec must be between {JOBS.DURATION_MIN_SEC} and {JOBS.DURATION_MAX_SEC}"
                )

        title = (title or "").strip()
        title = truncate(title, JOBS.TITLE_MAX_CHARS) if title else make_title_from_prompt(prompt)
        return {"prompt": prompt, "preset": preset, "title": title, "duration_sec": duration_sec}

    async def _check_cooldown(self, db: Session, user: User):
        now = datetime.now(timezone.utc)
        window_start = now - timedelta(milliseconds=JOBS.CREATE_COOLDOWN_MS)
        result = await db_execute(
            db,
            select(func.max(Job.created_at)).where(Job.user_id == user.id, Job.created_at >= window_start),
        )
        latest = result.scalar()
        if latest is None:
            return
        elapsed_ms = int((now - _as_utc(latest)).total_seconds() * 1000)
        retry_after = max(0, JOBS.CREATE_COOLDOWN_MS - elapsed_ms)
        logger.info(f"Create cooldown hit for user {user.id}, {retry_after}ms left")
        raise RateLimited("Please wait a moment before creating another job", retry_after_ms=retry_after)

    async def create(self, db: Session, user: User, prompt: str, preset: Optional[str] = None,
                     title: Optional[str] = None, duration_sec: Optional[int] = None) -> Job:
        """
        Validate, precheck balance, enforce the cooldown, then insert the job
        and charge one credit in a single transaction.
        """
        fields = self.validate_create(prompt, preset, title, duration_sec)

        if not await CreditLedger.can_afford(db, user, JOBS.CREDIT_COST):
            raise InsufficientCredits(balance=await CreditLedger.balance(db, user.id))

        await self._check_cooldown(db, user)

        job = Job(
            user_id=user.id,
            title=fields["title"],
            prompt=fields["prompt"],
            preset=fields["preset"],
            requested_duration_sec=fields["duration_sec"],
            status=JobStatus.QUEUED.value,
        )
        try:
            await CreditLedger.charge(db, user.id, JOBS.CREDIT_COST, commit=False)
            db.add(job)
            await db_commit(db)
        except InsufficientCredits:
            raise
        except Exception:
            await db_rollback(db)
            raise

        logger.info(f"Job {job.id} queued for user {user.id} (preset={job.preset})")
        return job

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def list_jobs(self, db: Session, user: User, take: Optional[int] = None,
                        skip: Optional[int] = None) -> List[Job]:
        take = clamp_take(take, JOBS.DEFAULT_PAGE_SIZE, JOBS.MAX_PAGE_SIZE)
        skip = max(0, int(skip or 0))
        result = await db_execute(
            db,
            select(Job)
            .where(Job.user_id == user.id)
            .order_by(Job.created_at.desc(), Job.id.desc())
            .offset(skip)
            .limit(take),
        )
        return list(result.scalars().all())

    async def get(self, db: Session, user: User, job_id: str) -> Job:
        return await self._owned_job(db, job_id, user)

    async def counts_by_status(self, db: Session, user: User) -> Dict[str, int]:
        result = await db_execute(
            db,
            select(Job.status, func.count(Job.id)).where(Job.user_id == user.id).group_by(Job.status),
        )
        counts = {status.value: 0 for status in JobStatus}
        for status, count in result.all():
            counts[status] = int(count)
        return counts

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    async def start(self, db: Session, user: User, job_id: str) -> Job:
        """QUEUED -> PROCESSING; a repeat call while PROCESSING is a no-op"""
        job = await self._owned_job(db, job_id, user)
        if job.job_status == JobStatus.PROCESSING:
            return job
        if job.job_status.is_terminal:
            raise InvalidState(f"Job is already {job.status}", status=job.status)

        if not await JobStatusManager.mark_processing(db, job.id):
            job = await self._reload(db, job)
            if job.job_status == JobStatus.PROCESSING:
                return job
            raise InvalidState(f"Job is already {job.status}", status=job.status)
        return await self._reload(db, job)

    # ------------------------------------------------------------------
    # complete
    # ------------------------------------------------------------------

    async def _fail_upstream(self, db: Session, job: Job, message: str):
        await JobStatusManager.mark_failed(db, job.id, message)
        logger.error(f"Job {job.id} failed: {message}")
        raise UpstreamFailure(message)

    async def _detect_duration(self, audio: bytes) -> Optional[float]:
        if self.duration_detector is None:
            return None
        outcome = await run_best_effort("duration detection", self.duration_detector, audio)
        return outcome.value if outcome.ok else None

    async def complete(self, db: Session, user: User, job_id: str, result_ref: Optional[str] = None,
                       duration_sec: Optional[float] = None, error: Optional[str] = None) -> Job:
        """
        error given: FAILED with that message, synthesis skipped.
        result_ref given: DONE with the caller's audio.
        Otherwise synthesize, store under the job key, DONE.

        Upstream failures end the job FAILED and raise UpstreamFailure; they
        are never retried here. Track reconciliation afterwards is best-effort.

        A client-supplied result must be an absolute http(s) URL; storage keys
        are only ever derived from the job id.
        """
        job = await self._owned_job(db, job_id, user)

        if error is not None:
            error = str(error).strip()
            if not error:
                raise InvalidInput("error must not be blank")
        result_ref = (result_ref or "").strip() or None
        if result_ref is not None and not is_absolute_http_url(result_ref):
            raise InvalidInput("resultUrl must be an absolute http(s) URL")

        async with self.locks.hold(job.id):
            job = await self._reload(db, job)
            if job.job_status not in COMPLETABLE:
                raise InvalidState(f"Job is already {job.status}", status=job.status)

            if error is not None:
                if not await JobStatusManager.mark_failed(db, job.id, error):
                    job = await self._reload(db, job)
                    raise InvalidState(f"Job is already {job.status}", status=job.status)
                return await self._reload(db, job)

            detected = None
            adapter_duration = None
            stored_key = None
            if result_ref:
                audio_ref = result_ref
            else:
                try:
                    synthesis = await self.synthesizer.synthesize(
                        job.prompt, job.preset, job.requested_duration_sec
                    )
                except SynthesisError as e:
                    await self._fail_upstream(db, job, str(e))

                stored_key = self.storage.key_for_job(job.id)
                try:
                    await self.storage.put(stored_key, synthesis.audio, synthesis.content_type)
                except StorageError as e:
                    await self._fail_upstream(db, job, f"Storage error: {e}")

                adapter_duration = synthesis.duration_sec
                detected = await self._detect_duration(synthesis.audio)
                audio_ref = stored_key

            effective = first_known(duration_sec, detected, adapter_duration, job.requested_duration_sec)
            effective = float(effective) if effective is not None else None

            if not await JobStatusManager.mark_done(db, job.id, audio_ref, effective):
                # A force-fail landed while we were synthesizing
                if stored_key:
                    await run_best_effort(f"discard blob {stored_key}", self.storage.delete, stored_key)
                job = await self._reload(db, job)
                raise InvalidState(f"Job is already {job.status}", status=job.status)

            job = await self._reload(db, job)
            logger.info(f"Job {job.id} done ({effective}s)")

            await run_best_effort(
                f"reconcile track for job {job.id}",
                self.reconciler.reconcile,
                db, job.user_id, job.id, job.result_ref, None, job.duration_sec,
            )
            return job

    # ------------------------------------------------------------------
    # force-fail / delete
    # ------------------------------------------------------------------

    async def force_fail(self, db: Session, caller: Caller, job_id: str,
                         reason: Optional[str] = None) -> Job:
        job = assert_caller_may_access(await db_call(db.get, Job, job_id), caller, "Job")
        message = (reason or "").strip() or DEFAULT_FAIL_REASON
        await JobStatusManager.force_fail(db, job.id, message)
        logger.warning(f"Job {job.id} force-failed by {caller.label}: {message}")
        return await self._reload(db, job)

    async def delete(self, db: Session, caller: Caller, job_id: str):
        """
        Blob cleanup first (best-effort), then track rows and the job row.
        Only keys derived from this job and its own tracks are deleted.
        """
        job = assert_caller_may_access(await db_call(db.get, Job, job_id), caller, "Job")

        conditions = [Track.job_id == job.id]
        if job.result_ref:
            conditions.append((Track.user_id == job.user_id) & (Track.audio_ref == job.result_ref))
        result = await db_execute(db, select(Track).where(or_(*conditions)))
        tracks = list(result.scalars().all())

        for track in tracks:
            track_key = key_for_track(track.id)
            await run_best_effort(f"delete track blob {track_key}", self.storage.delete, track_key)

        job_key = self.storage.key_for_job(job.id)
        await run_best_effort(f"delete job blob {job_key}", self.storage.delete, job_key)

        try:
            if tracks:
                await db_execute(db, sa_delete(Track).where(Track.id.in_([t.id for t in tracks])))
            await db_execute(db, sa_delete(Job).where(Job.id == job.id))
            await db_commit(db)
        except Exception:
            await db_rollback(db)
            raise
        logger.info(f"Deleted job {job.id} with {len(tracks)} track(s) by {caller.label}")

    # ------------------------------------------------------------------
    # audio
    # ------------------------------------------------------------------

    async def finished_job(self, db: Session, user: User, job_id: str) -> Job:
        """Owned job with audio; anything else is NotFound for audio purposes"""
        job = await self._owned_job(db, job_id, user)
        if job.job_status != JobStatus.DONE or not job.result_ref:
            raise NotFound("Audio not ready")
        return job


__all__ = ['JobService', 'JobLocks', 'first_known']
