# dependencies.py - app.state lookups and rate-limit enforcement for route handlers

from fastapi import Request, Response

from debug_log import DebugLogBuffer
from job_service import JobService
from prompt_improver import PromptImprover
from rate_limiter import SlidingWindowRateLimiter
from storage import StorageGateway
from track_reconciler import TrackReconciler


def get_job_service(request: Request) -> JobService:
    return request.app.state.job_service


def get_reconciler(request: Request) -> TrackReconciler:
    return request.app.state.job_service.reconciler


def get_storage(request: Request) -> StorageGateway:
    return request.app.state.storage


def get_prompt_improver(request: Request) -> PromptImprover:
    return request.app.state.prompt_improver


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


def get_debug_buffer(request: Request) -> DebugLogBuffer:
    return request.app.state.debug_log


def enforce_rate_limit(request: Request, response: Response, action: str, subject: str):
    """Raises RateLimited; on admission copies the X-RateLimit-* headers onto response"""
    decision = get_rate_limiter(request).check(action, subject)
    response.headers.update(decision.headers())
    return decision


__all__ = [
    'get_job_service',
    'get_reconciler',
    'get_storage',
    'get_prompt_improver',
    'get_rate_limiter',
    'get_debug_buffer',
    'enforce_rate_limit',
]
