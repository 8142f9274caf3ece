# schemas.py
import json
import logging
from typing import Optional

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from errors import InvalidInput

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class JobCreateRequest(CamelModel):
    prompt: Optional[str] = None
    preset: Optional[str] = None
    title: Optional[str] = None
    duration_sec: Optional[int] = Field(default=None, alias="durationSec")


class JobCompleteRequest(CamelModel):
    result_url: Optional[str] = Field(default=None, alias="resultUrl")
    duration_sec: Optional[float] = Field(default=None, alias="durationSec", ge=0)
    error: Optional[str] = None


class PromptImproveRequest(CamelModel):
    prompt: Optional[str] = None
    preset: Optional[str] = None


class JobFailRequest(CamelModel):
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return self.error or self.reason


class TrackCreateRequest(CamelModel):
    job_id: str = Field(alias="jobId")
    title: Optional[str] = None
    part_index: Optional[int] = Field(default=None, alias="partIndex", ge=0)


class TrackRenameRequest(CamelModel):
    title: str


class ShareRequest(CamelModel):
    is_public: bool = Field(alias="isPublic")


class StoryAssignRequest(CamelModel):
    story_id: Optional[str] = Field(default=None, alias="storyId")
    part_index: Optional[int] = Field(default=None, alias="partIndex", ge=0)
    part_title: Optional[str] = Field(default=None, alias="partTitle")


class BillingConfirmRequest(CamelModel):
    user_id: str = Field(alias="userId")
    plan: Optional[str] = None
    credits: Optional[int] = Field(default=None, gt=0)
    customer_ref: Optional[str] = Field(default=None, alias="customerRef")
    subscription_ref: Optional[str] = Field(default=None, alias="subscriptionRef")


class BillingCancelRequest(CamelModel):
    customer_ref: str = Field(alias="customerRef")


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    return f"{field}: {err.get('msg')}" if field else err.get("msg", "Invalid input")


async def parse_job_create(request: Request) -> JobCreateRequest:
    """
    Accepts JSON, multipart form or urlencoded bodies and yields one typed
    request. Empty strings from forms count as missing.
    """
    content_type = (request.headers.get("content-type") or "").lower()
    try:
        if "application/json" in content_type:
            payload = await request.json()
        elif "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:
            form = await request.form()
            payload = {k: v for k, v in form.items() if isinstance(v, str) and v.strip() != ""}
        else:
            raw = await request.body()
            payload = json.loads(raw) if raw.strip() else {}
    except ValueError:
        raise InvalidInput("Request body could not be parsed")

    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be an object")

    try:
        return JobCreateRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidInput(_first_error(e))


__all__ = [
    'JobCreateRequest',
    'JobCompleteRequest',
    'JobFailRequest',
    'PromptImproveRequest',
    'TrackCreateRequest',
    'TrackRenameRequest',
    'ShareRequest',
    'StoryAssignRequest',
    'BillingConfirmRequest',
    'BillingCancelRequest',
    'parse_job_create',
]
