# track_reconciler.py - library entries derived from completed jobs
"""
One Track per (owner, audio_ref). Creation is an upsert: insert, and when the
unique constraint fires because a concurrent completion got there first,
roll back and return the row that won.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete as sa_delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import assert_owner
from config.limits import TRACKS
from database import db_call, db_commit, db_execute, db_rollback
from errors import InvalidInput, InvalidState, run_best_effort
from job_status_manager import JobStatus
from models import Job, Story, Track, User
from storage import StorageGateway, key_for_track
from title import resolve_track_title, sanitize_track_title

logger = logging.getLogger(__name__)

CURSOR_SEPARATOR = "::"


def encode_cursor(track: Track) -> str:
    return f"{track.created_at.isoformat()}{CURSOR_SEPARATOR}{track.id}"


def decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        stamp, track_id = cursor.split(CURSOR_SEPARATOR, 1)
        return datetime.fromisoformat(stamp), track_id
    except ValueError:
        raise InvalidInput("Invalid cursor")


def clamp_take(take: Optional[int], default: int, maximum: int) -> int:
    if take is None:
        return default
    return max(1, min(maximum, int(take)))


class TrackReconciler:
    def __init__(self, storage: StorageGateway):
        self.storage = storage

    async def _find(self, db: Session, user_id: str, audio_ref: str) -> Optional[Track]:
        result = await db_execute(
            db,
            select(Track).where(and_(Track.user_id == user_id, Track.audio_ref == audio_ref)),
        )
        return result.scalars().first()

    async def _owned_track(self, db: Session, user: User, track_id: str) -> Track:
        track = await db_call(db.get, Track, track_id)
        return assert_owner(track, user.id, "Track")

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        db: Session,
        user_id: str,
        job_id: Optional[str],
        result_ref: str,
        title: Optional[str] = None,
        duration_sec: Optional[float] = None,
        rename_existing: bool = False,
    ) -> Track:
        """
        Upsert the library entry for (user_id, result_ref).

        Existing rows only pick up a newly known duration (and, with
        rename_existing, an explicit differing title). New rows take their
        title from explicit > job title > prompt > fallback, capped at 80.
        """
        if not result_ref:
            raise InvalidInput("Track needs an audio reference")

        existing = await self._find(db, user_id, result_ref)
        if existing is not None:
            return await self._refresh_existing(db, existing, title, duration_sec, rename_existing)

        job = await db_call(db.get, Job, job_id) if job_id else None
        track = Track(
            user_id=user_id,
            job_id=job_id,
            audio_ref=result_ref,
            title=resolve_track_title(
                explicit=title,
                job_title=job.title if job else None,
                prompt=job.prompt if job else None,
            ),
            duration_seconds=duration_sec,
        )
        db.add(track)
        try:
            await db_commit(db)
        except IntegrityError:
            await db_rollback(db)
            existing = await self._find(db, user_id, result_ref)
            if existing is None:
                raise
            logger.info(f"Track for {result_ref} created concurrently, reusing {existing.id}")
            return await self._refresh_existing(db, existing, title, duration_sec, rename_existing)
        except Exception:
            await db_rollback(db)
            raise

        logger.info(f"Created track {track.id} for job {job_id}")
        return track

    async def _refresh_existing(self, db: Session, track: Track, title: Optional[str],
                                duration_sec: Optional[float], rename_existing: bool) -> Track:
        changed = False
        if duration_sec is not None and track.duration_seconds != duration_sec:
            track.duration_seconds = duration_sec
            changed = True
        if rename_existing and title:
            clean = sanitize_track_title(title)
            if clean and clean != track.title:
                track.title = clean
                changed = True
        if changed:
            try:
                await db_commit(db)
            except Exception:
                await db_rollback(db)
                raise
        return track

    async def promote_job(self, db: Session, user: User, job_id: str,
                          title: Optional[str] = None, part_index: Optional[int] = None) -> Track:
        """Explicit 'save to library' for a finished job"""
        job = assert_owner(await db_call(db.get, Job, job_id), user.id, "Job")
        if job.job_status != JobStatus.DONE or not job.result_ref:
            raise InvalidState("Job has no finished audio yet", status=job.status)

        track = await self.reconcile(
            db, user.id, job.id, job.result_ref,
            title=sanitize_track_title(title) if title else None,
            duration_sec=job.duration_sec,
            rename_existing=True,
        )
        if part_index is not None and track.part_index != part_index:
            track.part_index = part_index
            try:
                await db_commit(db)
            except Exception:
                await db_rollback(db)
                raise
        return track

    # ------------------------------------------------------------------
    # Owner edits
    # ------------------------------------------------------------------

    async def rename(self, db: Session, user: User, track_id: str, raw_title: Optional[str]) -> Track:
        title = sanitize_track_title(raw_title)
        if not title:
            raise InvalidInput("Title must not be empty")
        track = await self._owned_track(db, user, track_id)
        track.title = title
        try:
            await db_commit(db)
        except Exception:
            await db_rollback(db)
            raise
        logger.info(f"Track {track_id} renamed")
        return track

    async def set_story(self, db: Session, user: User, track_id: str, story_id: Optional[str],
                        part_index: Optional[int] = None, part_title: Optional[str] = None) -> Track:
        track = await self._owned_track(db, user, track_id)
        if story_id:
            assert_owner(await db_call(db.get, Story, story_id), user.id, "Story")
            track.story_id = story_id
            track.part_index = part_index
            track.part_title = sanitize_track_title(part_title) or None
        else:
            track.story_id = None
            track.part_index = None
            track.part_title = None
        try:
            await db_commit(db)
        except Exception:
            await db_rollback(db)
            raise
        return track

    async def delete(self, db: Session, user: User, track_id: str):
        """Row always goes; blob cleanup is best-effort"""
        track = await self._owned_track(db, user, track_id)

        own_key = key_for_track(track.id)
        for key in self.storage.track_audio_keys(track):
            if key != own_key:
                # Job audio stays while the job still serves it
                result = await db_execute(
                    db, select(Job.id).where(Job.id == track.job_id, Job.result_ref == track.audio_ref)
                )
                if result.first() is not None:
                    continue
            await run_best_effort(f"delete audio blob {key}", self.storage.delete, key)

        try:
            await db_execute(db, sa_delete(Track).where(Track.id == track.id))
            await db_commit(db)
        except Exception:
            await db_rollback(db)
            raise
        logger.info(f"Deleted track {track_id}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, db: Session, user: User, track_id: str) -> Track:
        return await self._owned_track(db, user, track_id)

    async def list_tracks(self, db: Session, user: User, cursor: Optional[str] = None,
                          take: Optional[int] = None, q: Optional[str] = None,
                          story_id: Optional[str] = None) -> dict:
        """Newest first, keyset-paginated on (created_at, id)"""
        take = clamp_take(take, TRACKS.DEFAULT_PAGE_SIZE, TRACKS.MAX_PAGE_SIZE)

        stmt = select(Track).where(Track.user_id == user.id)
        if story_id:
            stmt = stmt.where(Track.story_id == story_id)
        if q and q.strip():
            pattern = f"%{q.strip()}%"
            stmt = stmt.outerjoin(Job, Job.id == Track.job_id).where(
                or_(Track.title.ilike(pattern), Job.prompt.ilike(pattern))
            )
        if cursor:
            stamp, last_id = decode_cursor(cursor)
            stmt = stmt.where(
                or_(
                    Track.created_at < stamp,
                    and_(Track.created_at == stamp, Track.id < last_id),
                )
            )
        stmt = stmt.order_by(Track.created_at.desc(), Track.id.desc()).limit(take + 1)

        result = await db_execute(db, stmt)
        rows: List[Track] = list(result.scalars().all())
        has_more = len(rows) > take
        rows = rows[:take]
        return {
            "items": [t.to_dict() for t in rows],
            "nextCursor": encode_cursor(rows[-1]) if has_more and rows else None,
        }

    async def story_tracks(self, db: Session, user: User, story_id: str) -> dict:
        story = assert_owner(await db_call(db.get, Story, story_id), user.id, "Story")
        result = await db_execute(
            db,
            select(Track)
            .where(and_(Track.story_id == story.id, Track.user_id == user.id))
            .order_by(Track.part_index.is_(None), Track.part_index.asc(), Track.created_at.asc()),
        )
        return {
            "story": {"id": story.id, "title": story.title},
            "tracks": [t.to_dict() for t in result.scalars().all()],
        }


__all__ = [
    'TrackReconciler',
    'encode_cursor',
    'decode_cursor',
    'clamp_take',
]
