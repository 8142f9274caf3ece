# share_resolver.py - public share slugs for tracks

import logging
import secrets
import string
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import assert_owner
from config.limits import TRACKS
from database import db_call, db_commit, db_execute, db_rollback
from errors import NotFound, UpstreamFailure
from models import Track, User

logger = logging.getLogger(__name__)

SLUG_ALPHABET = string.ascii_lowercase + string.digits


def generate_slug(length: int = TRACKS.SHARE_SLUG_LENGTH) -> str:
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


class ShareResolver:
    """
    Slug lookups only ever match published tracks. Unpublishing clears the
    slug, so a later republish issues a fresh one.
    """

    @staticmethod
    async def resolve_by_slug(db: Session, slug: Optional[str]) -> Track:
        if not slug:
            raise NotFound("Shared track not found")
        result = await db_execute(
            db,
            select(Track).where(and_(Track.share_slug == slug, Track.is_public == True)),  # noqa: E712
        )
        track = result.scalars().first()
        if track is None:
            raise NotFound("Shared track not found")
        return track

    @staticmethod
    async def _slug_taken(db: Session, slug: str) -> bool:
        result = await db_execute(db, select(Track.id).where(Track.share_slug == slug).limit(1))
        return result.first() is not None

    @staticmethod
    async def set_public(db: Session, user: User, track_id: str, want: bool) -> Track:
        track = assert_owner(await db_call(db.get, Track, track_id), user.id, "Track")

        if not want:
            track.is_public = False
            track.share_slug = None
            try:
                await db_commit(db)
            except Exception:
                await db_rollback(db)
                raise
            logger.info(f"Track {track_id} unpublished")
            return track

        if track.is_public and track.share_slug:
            return track

        for attempt in range(1, TRACKS.SHARE_SLUG_MAX_ATTEMPTS + 1):
            slug = generate_slug()
            if await ShareResolver._slug_taken(db, slug):
                logger.warning(f"Share slug collision on attempt {attempt}, regenerating")
                continue
            track.is_public = True
            track.share_slug = slug
            try:
                await db_commit(db)
            except IntegrityError:
                # Lost a race for the same slug; reload and try again
                await db_rollback(db)
                await db_call(db.refresh, track)
                continue
            except Exception:
                await db_rollback(db)
                raise
            logger.info(f"Track {track_id} published")
            return track

        raise UpstreamFailure("Could not allocate a unique share slug")


__all__ = ['ShareResolver', 'generate_slug']
