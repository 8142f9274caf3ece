# public_routes.py - unauthenticated access to published tracks
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_storage
from share_resolver import ShareResolver
from storage import StorageGateway
from track_routes import track_audio_response

logger = logging.getLogger(__name__)

public_router = APIRouter(prefix="/public", tags=["public"])


@public_router.get("/{slug}")
async def public_audio(
    slug: str,
    db: Session = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
):
    track = await ShareResolver.resolve_by_slug(db, slug)
    return await track_audio_response(storage, track, "public, max-age=300")


@public_router.get("/{slug}/meta")
async def public_meta(slug: str, db: Session = Depends(get_db)):
    track = await ShareResolver.resolve_by_slug(db, slug)
    return {
        "slug": slug,
        "title": track.title,
        "durationSeconds": track.duration_seconds,
        "createdAt": track.created_at.isoformat() if track.created_at else None,
    }


__all__ = ['public_router']
