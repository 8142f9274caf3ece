# track_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from auth import login_required
from config.constants import AUDIO_CONTENT_TYPE
from database import get_db
from dependencies import get_reconciler, get_storage
from errors import BlobNotFound, NotFound
from models import User
from schemas import ShareRequest, StoryAssignRequest, TrackCreateRequest, TrackRenameRequest
from share_resolver import ShareResolver
from storage import StorageGateway, is_absolute_http_url
from track_reconciler import TrackReconciler

logger = logging.getLogger(__name__)

track_router = APIRouter(tags=["tracks"])


#=============================================
# LIBRARY
#=============================================

@track_router.get("/tracks")
async def list_tracks(
    cursor: Optional[str] = Query(None),
    take: Optional[int] = Query(None),
    q: Optional[str] = Query(None),
    story_id: Optional[str] = Query(None, alias="storyId"),
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
):
    return await tracks.list_tracks(db, user, cursor=cursor, take=take, q=q, story_id=story_id)


@track_router.post("/tracks")
async def create_track(
    body: TrackCreateRequest,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
):
    track = await tracks.promote_job(db, user, body.job_id, title=body.title, part_index=body.part_index)
    return track.to_dict()


@track_router.get("/tracks/{track_id}")
async def get_track(
    track_id: str,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
):
    track = await tracks.get(db, user, track_id)
    return track.to_dict()


@track_router.patch("/tracks/{track_id}")
async def rename_track(
    track_id: str,
    body: TrackRenameRequest,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
):
    track = await tracks.rename(db, user, track_id, body.title)
    return track.to_dict()


@track_router.delete("/tracks/{track_id}", status_code=204)
async def delete_track(
    track_id: str,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
):
    await tracks.delete(db, user, track_id)
    return Response(status_code=204)


@track_router.patch("/tracks/{track_id}/share")
async def share_track(
    track_id: str,
    body: ShareRequest,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
):
    track = await ShareResolver.set_public(db, user, track_id, body.is_public)
    return {"id": track.id, "isPublic": track.is_public, "shareSlug": track.share_slug}


@track_router.patch("/tracks/{track_id}/story")
async def assign_story(
    track_id: str,
    body: StoryAssignRequest,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
):
    track = await tracks.set_story(
        db, user, track_id, body.story_id, part_index=body.part_index, part_title=body.part_title
    )
    return track.to_dict()


@track_router.get("/tracks/{track_id}/audio")
async def get_track_audio(
    track_id: str,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
    storage: StorageGateway = Depends(get_storage),
):
    track = await tracks.get(db, user, track_id)
    return await track_audio_response(storage, track, "private, max-age=0")


async def track_audio_response(storage: StorageGateway, track, cache_control: str):
    """External audio refs redirect; stored audio is served inline"""
    if is_absolute_http_url(track.audio_ref):
        return RedirectResponse(track.audio_ref, status_code=307)
    data = await read_track_audio(storage, track)
    return Response(
        content=data,
        media_type=AUDIO_CONTENT_TYPE,
        headers={"Content-Length": str(len(data)), "Cache-Control": cache_control},
    )


async def read_track_audio(storage: StorageGateway, track) -> bytes:
    """The job's generated audio first, then the track's own tracks/<id>.mp3 copy"""
    for key in storage.track_audio_keys(track):
        try:
            return await storage.get(key)
        except BlobNotFound:
            continue
    logger.warning(f"No audio blob found for track {track.id}")
    raise NotFound("Audio not found")


#=============================================
# STORIES
#=============================================

@track_router.get("/stories/{story_id}/tracks")
async def story_tracks(
    story_id: str,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    tracks: TrackReconciler = Depends(get_reconciler),
):
    return await tracks.story_tracks(db, user, story_id)


__all__ = ['track_router', 'read_track_audio', 'track_audio_response']
