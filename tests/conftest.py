import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

_TMP = tempfile.mkdtemp(prefix="softvibe-tests-")

# Must be set before anything imports config.settings
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["JOB_SYSTEM_SECRET"] = "test-system-secret"
os.environ["LOCAL_STORAGE_ROOT"] = os.path.join(_TMP, "public")
os.environ.pop("ELEVENLABS_API_KEY", None)
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("OPENAI_BASE_URL", None)
for _name in ("S3_ENDPOINT", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "S3_BUCKET"):
    os.environ.pop(_name, None)

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from openai import AsyncOpenAI  # noqa: E402

from config import settings  # noqa: E402
from config.constants import SYSTEM_SECRET_HEADER  # noqa: E402
from database import Base, SessionLocal, engine, init_db  # noqa: E402
from debug_log import DebugLogBuffer  # noqa: E402
from errors import SynthesisError  # noqa: E402
from job_service import JobService  # noqa: E402
from job_status_manager import JobStatus  # noqa: E402
from models import Job, Track, User, UserSession  # noqa: E402
from prompt_improver import PromptImprover  # noqa: E402
from rate_limiter import SlidingWindowRateLimiter  # noqa: E402
from speech_synthesis import SynthesisResult  # noqa: E402
from storage import StorageGateway  # noqa: E402

SYSTEM_HEADERS = {SYSTEM_SECRET_HEADER: "test-system-secret"}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def schema():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class FakeSynthesizer:
    """Stands in for SpeechSynthesisAdapter; records every call"""

    def __init__(self, audio: bytes = b"ID3-fake-mp3-audio", duration_sec: Optional[float] = 33.0,
                 error: Optional[str] = None, on_call=None):
        self.audio = audio
        self.duration_sec = duration_sec
        self.error = error
        self.on_call = on_call
        self.calls = []

    async def synthesize(self, prompt, preset=None, requested_duration_sec=None, **kwargs):
        self.calls.append({"prompt": prompt, "preset": preset, "duration": requested_duration_sec})
        if self.on_call is not None:
            await self.on_call()
        if self.error:
            raise SynthesisError(self.error)
        return SynthesisResult(audio=self.audio, duration_sec=self.duration_sec)


class FixedDuration:
    def __init__(self, value: Optional[float] = 42.0):
        self.value = value
        self.calls = 0

    async def __call__(self, audio: bytes):
        self.calls += 1
        return self.value


@pytest.fixture
def make_synth():
    return FakeSynthesizer


@pytest.fixture
def system_headers():
    return dict(SYSTEM_HEADERS)


@pytest.fixture
def synth():
    return FakeSynthesizer()


@pytest.fixture
def detector():
    return FixedDuration(42.0)


@pytest.fixture
def storage(tmp_path):
    return StorageGateway(local_root=str(tmp_path / "blobs"), prefix="generated")


@pytest.fixture
def service(storage, synth, detector):
    return JobService(storage, synth, detector)


@dataclass
class Account:
    user: User
    session_id: str
    headers: dict = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.user.id


@pytest.fixture
def make_account(db):
    def _make(credits: int = 5, is_admin: bool = False, email: Optional[str] = None,
              customer_ref: Optional[str] = None) -> Account:
        user = User(
            email=email or f"{uuid4().hex[:10]}@example.com",
            credits=credits,
            is_admin=is_admin,
            external_customer_ref=customer_ref,
        )
        db.add(user)
        db.flush()
        session_id = uuid4().hex
        db.add(UserSession(
            session_id=session_id,
            user_id=user.id,
            expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        ))
        db.commit()
        return Account(
            user=user,
            session_id=session_id,
            headers={"cookie": f"{settings.SESSION_COOKIE_NAME}={session_id}"},
        )

    return _make


@pytest.fixture
def make_job(db):
    """Insert a job row directly, bypassing credits and the create cooldown"""
    def _make(user: User, status: JobStatus = JobStatus.QUEUED, prompt: str = "A quiet walk in the rain",
              title: str = "A quiet walk in the rain", result_ref: Optional[str] = None,
              duration_sec: Optional[float] = None, preset: Optional[str] = "sleep-story") -> Job:
        job = Job(
            user_id=user.id,
            title=title,
            prompt=prompt,
            preset=preset,
            status=status.value,
            result_ref=result_ref,
            duration_sec=duration_sec,
        )
        db.add(job)
        db.commit()
        return job

    return _make


@pytest.fixture
def make_track(db):
    def _make(user: User, audio_ref: Optional[str] = None, title: str = "Evening rain",
              job_id: Optional[str] = None, created_at: Optional[datetime] = None, **values) -> Track:
        track = Track(
            user_id=user.id,
            job_id=job_id,
            title=title,
            audio_ref=audio_ref or f"generated/{uuid4()}.mp3",
            **values,
        )
        if created_at is not None:
            track.created_at = created_at
        db.add(track)
        db.commit()
        return track

    return _make


@pytest.fixture
def rate_limiter():
    return SlidingWindowRateLimiter()


@pytest.fixture
def debug_buffer():
    return DebugLogBuffer(max_entries=200)


def chat_completion(content: str) -> dict:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o-mini",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"},
        ],
    }


class FakeChatModel:
    """OpenAI-compatible /chat/completions served through httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.reply: Optional[str] = None  # None echoes the user message
        self.status_code = 200

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "model overloaded"}})
        content = self.reply if self.reply is not None else f"Improved: {body['messages'][-1]['content']}"
        return httpx.Response(200, json=chat_completion(content))

    def client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key="test-openai-key",
            base_url="https://llm.example.com/v1",
            max_retries=0,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handle)),
        )


@pytest.fixture
def chat_model():
    return FakeChatModel()


@pytest.fixture
def prompt_improver(chat_model):
    return PromptImprover(client=chat_model.client(), model="gpt-4o-mini")


@pytest.fixture
def client(storage, synth, detector, rate_limiter, debug_buffer, prompt_improver):
    from app import create_app

    application = create_app(
        storage=storage,
        synthesizer=synth,
        duration_detector=detector,
        rate_limiter=rate_limiter,
        debug_buffer=debug_buffer,
        prompt_improver=prompt_improver,
        create_schema=False,
    )
    with TestClient(application) as test_client:
        yield test_client
