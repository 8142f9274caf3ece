# job_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from auth import Caller, login_required, system_or_owner
from config.constants import AUDIO_CONTENT_TYPE, PRESETS
from database import get_db
from dependencies import enforce_rate_limit, get_job_service, get_prompt_improver, get_storage
from errors import BlobNotFound, NotFound
from job_service import JobService
from models import Job, User
from prompt_improver import PromptImprover
from rate_limiter import ACTION
from schemas import JobCompleteRequest, JobFailRequest, PromptImproveRequest, parse_job_create
from storage import StorageGateway, is_absolute_http_url

logger = logging.getLogger(__name__)

job_router = APIRouter(tags=["jobs"])


#=============================================
# PRESETS AND PROMPTS
#=============================================

@job_router.get("/presets")
async def list_presets():
    return {"presets": PRESETS}


@job_router.post("/prompt-improve")
async def improve_prompt(
    request: Request,
    response: Response,
    body: Optional[PromptImproveRequest] = Body(None),
    user: User = Depends(login_required),
    improver: PromptImprover = Depends(get_prompt_improver),
):
    """Suggests a refined prompt; no credits are charged"""
    enforce_rate_limit(request, response, ACTION.PROMPT_IMPROVE, user.id)
    body = body or PromptImproveRequest()
    improved = await improver.improve(body.prompt, body.preset)
    return {"improvedPrompt": improved}


#=============================================
# JOB LIFECYCLE
#=============================================

@job_router.post("/jobs", status_code=201)
async def create_job(
    request: Request,
    response: Response,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    body = await parse_job_create(request)
    enforce_rate_limit(request, response, ACTION.CREATE, user.id)

    job = await jobs.create(
        db, user,
        prompt=body.prompt,
        preset=body.preset,
        title=body.title,
        duration_sec=body.duration_sec,
    )
    return {"id": job.id, "status": job.status, "title": job.title, "prompt": job.prompt}


@job_router.get("/jobs")
async def list_jobs(
    take: Optional[int] = Query(None),
    skip: Optional[int] = Query(None, ge=0),
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    return [job.to_summary() for job in await jobs.list_jobs(db, user, take=take, skip=skip)]


@job_router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    job = await jobs.get(db, user, job_id)
    return job.to_detail()


@job_router.post("/jobs/{job_id}/start")
async def start_job(
    job_id: str,
    request: Request,
    response: Response,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    enforce_rate_limit(request, response, ACTION.START, user.id)
    job = await jobs.start(db, user, job_id)
    return {"id": job.id, "status": job.status}


@job_router.post("/jobs/{job_id}/complete")
async def complete_job(
    job_id: str,
    request: Request,
    response: Response,
    body: Optional[JobCompleteRequest] = Body(None),
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    enforce_rate_limit(request, response, ACTION.COMPLETE, user.id)
    body = body or JobCompleteRequest()
    job = await jobs.complete(
        db, user, job_id,
        result_ref=body.result_url,
        duration_sec=body.duration_sec,
        error=body.error,
    )
    return job.to_detail()


@job_router.post("/jobs/{job_id}/fail")
async def fail_job(
    job_id: str,
    body: Optional[JobFailRequest] = Body(None),
    caller: Caller = Depends(system_or_owner),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    reason = body.message if body else None
    job = await jobs.force_fail(db, caller, job_id, reason)
    return {"id": job.id, "status": job.status, "error": job.error}


@job_router.delete("/jobs/{job_id}", status_code=204)
async def delete_job(
    job_id: str,
    caller: Caller = Depends(system_or_owner),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    await jobs.delete(db, caller, job_id)
    return Response(status_code=204)


#=============================================
# AUDIO
#=============================================

def _audio_headers(length: int) -> dict:
    return {
        "Content-Length": str(length),
        "Cache-Control": "private, max-age=0, no-store",
        "Accept-Ranges": "none",
    }


async def _job_audio_key(db: Session, user: User, job_id: str, jobs: JobService):
    """External results redirect (key None); stored audio lives under the job's own key"""
    job: Job = await jobs.finished_job(db, user, job_id)
    if is_absolute_http_url(job.result_ref):
        return job, None
    return job, jobs.storage.key_for_job(job.id)


@job_router.get("/jobs/{job_id}/audio")
async def get_job_audio(
    job_id: str,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
    storage: StorageGateway = Depends(get_storage),
):
    job, key = await _job_audio_key(db, user, job_id, jobs)
    if key is None:
        return RedirectResponse(job.result_ref, status_code=307)
    try:
        data = await storage.get(key)
    except BlobNotFound:
        logger.warning(f"Audio blob missing for job {job_id}: {key}")
        raise NotFound("Audio not found")
    return Response(content=data, media_type=AUDIO_CONTENT_TYPE, headers=_audio_headers(len(data)))


@job_router.head("/jobs/{job_id}/audio")
async def head_job_audio(
    job_id: str,
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
    storage: StorageGateway = Depends(get_storage),
):
    job, key = await _job_audio_key(db, user, job_id, jobs)
    if key is None:
        return RedirectResponse(job.result_ref, status_code=307)
    try:
        info = await storage.head(key)
    except BlobNotFound:
        raise NotFound("Audio not found")
    headers = _audio_headers(info.length)
    return Response(status_code=200, media_type=info.content_type, headers=headers)


__all__ = ['job_router']
