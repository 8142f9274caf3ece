import asyncio

import httpx
import pytest

from config import settings
from duration_manager import DurationManager
from errors import SynthesisError
from s3_client import S3Client
from script_builder import (
    build_script,
    clamp_target,
    estimate_spoken_seconds,
    normalize_prompt,
    whisper_prefix_for_preset,
)
from speech_synthesis import (
    ElevenLabsProvider,
    SpeechSynthesisAdapter,
    SynthesisResult,
    normalize_stability,
    resolve_voice_id,
)


# ----------------------------------------------------------------------------
# Script builder
# ----------------------------------------------------------------------------

def test_normalize_prompt_drops_spoken_instructions():
    assert normalize_prompt("Please whisper a story about the sea") == "a story about the sea"
    assert normalize_prompt("please") == "please"


def test_estimate_uses_words_per_minute_and_floor():
    assert estimate_spoken_seconds(" ".join(["word"] * 120), None) == 60
    assert estimate_spoken_seconds(" ".join(["word"] * 135), "sleep-story") == 60
    assert estimate_spoken_seconds("hi", None) == 5


def test_clamp_target():
    assert clamp_target(None) is None
    assert clamp_target(5) == 15
    assert clamp_target(5000) == 1800
    assert clamp_target("abc") is None
    assert clamp_target(float("nan")) is None
    assert clamp_target(300.4) == 300


def test_build_script_is_deterministic_and_framed():
    first = build_script("A lighthouse keeper watches the tide", "sleep-story", 120)
    second = build_script("A lighthouse keeper watches the tide", "sleep-story", 120)
    assert first == second
    assert first.text.startswith("It is evening.")
    assert "lighthouse keeper" in first.text


def test_build_script_expands_short_prompts_toward_target():
    plain = build_script("Soft rain on the window", "meditation")
    fitted = build_script("Soft rain on the window", "meditation", 180)
    assert fitted.estimated_seconds > plain.estimated_seconds


def test_build_script_trims_long_prompts():
    prompt = " ".join(f"The soft rain falls on roof number {i}." for i in range(120))
    plain = build_script(prompt, "kids-story")
    fitted = build_script(prompt, "kids-story", 60)
    assert fitted.estimated_seconds < plain.estimated_seconds


def test_whisper_prefix_only_for_classic_asmr():
    assert whisper_prefix_for_preset("classic-asmr").startswith("Whisper")
    assert whisper_prefix_for_preset("sleep-story") == ""


# ----------------------------------------------------------------------------
# Voice parameters
# ----------------------------------------------------------------------------

def test_v3_stability_snaps_to_allowed_values():
    assert normalize_stability("eleven_v3", 0.1) == 0.0
    assert normalize_stability("eleven_v3", 0.3) == 0.5
    assert normalize_stability("eleven_v3", 0.9) == 1.0
    assert normalize_stability("eleven_v3", None) == 0.5
    assert normalize_stability("eleven_multilingual_v2", None) == 0.4
    assert normalize_stability("eleven_multilingual_v2", 0.33) == 0.33


def test_voice_resolution():
    assert resolve_voice_id("sleep-story", explicit_voice_id=" custom ") == "custom"
    assert resolve_voice_id(None) == settings.ELEVENLABS_VOICE_ID
    assert resolve_voice_id("kids-story") == settings.ELEVENLABS_VOICE_ID


# ----------------------------------------------------------------------------
# Providers
# ----------------------------------------------------------------------------

def test_elevenlabs_request_shape():
    provider = ElevenLabsProvider(api_key="key-1", base_url="https://tts.example.com/", model_id="eleven_v3")
    request = provider.build_request("Hello there", "voice-9", stability=0.2)
    assert request["url"] == "https://tts.example.com/v1/text-to-speech/voice-9"
    assert request["headers"]["xi-api-key"] == "key-1"
    assert request["json"]["model_id"] == "eleven_v3"
    assert request["json"]["voice_settings"]["stability"] == 0.0


def test_elevenlabs_requires_api_key():
    with pytest.raises(ValueError):
        ElevenLabsProvider(api_key="")


@pytest.mark.anyio
async def test_elevenlabs_speak_success_and_failure():
    def handler(request: httpx.Request):
        if request.url.path.endswith("/good"):
            return httpx.Response(200, content=b"ID3audio", headers={"content-type": "audio/mpeg"})
        return httpx.Response(500, text="provider exploded")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = ElevenLabsProvider(api_key="k", base_url="https://tts.example.com", client=client)
        result = await provider.speak("hello", "good")
        assert result.audio == b"ID3audio"
        assert result.voice_id == "good"

        with pytest.raises(SynthesisError, match="500"):
            await provider.speak("hello", "bad")


# ----------------------------------------------------------------------------
# Adapter
# ----------------------------------------------------------------------------

class ScriptedProvider:
    name = "scripted"

    def __init__(self, audio=b"ID3", duration=None, delay=0.0, error=None):
        self.audio = audio
        self.duration = duration
        self.delay = delay
        self.error = error
        self.texts = []

    async def speak(self, text, voice_id=None):
        self.texts.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return SynthesisResult(audio=self.audio, duration_sec=self.duration, voice_id=voice_id)


@pytest.mark.anyio
async def test_adapter_falls_back_to_script_estimate_for_duration():
    provider = ScriptedProvider()
    result = await SpeechSynthesisAdapter(provider=provider, timeout=5).synthesize("Waves on sand", "sleep-story")
    assert result.audio == b"ID3"
    assert result.duration_sec == float(build_script("Waves on sand", "sleep-story").estimated_seconds)
    assert provider.texts[0].startswith("It is evening.")


@pytest.mark.anyio
async def test_adapter_keeps_provider_duration():
    result = await SpeechSynthesisAdapter(provider=ScriptedProvider(duration=61.5), timeout=5).synthesize("Waves")
    assert result.duration_sec == 61.5


@pytest.mark.anyio
async def test_adapter_timeout_is_a_synthesis_error():
    adapter = SpeechSynthesisAdapter(provider=ScriptedProvider(delay=1.0), timeout=0.05)
    with pytest.raises(SynthesisError, match="timed out"):
        await adapter.synthesize("Waves on sand")


@pytest.mark.anyio
async def test_adapter_wraps_provider_errors_and_empty_audio():
    with pytest.raises(SynthesisError, match="connection reset"):
        await SpeechSynthesisAdapter(
            provider=ScriptedProvider(error=ConnectionError("connection reset")), timeout=5
        ).synthesize("Waves on sand")

    with pytest.raises(SynthesisError, match="no audio"):
        await SpeechSynthesisAdapter(provider=ScriptedProvider(audio=b""), timeout=5).synthesize("Waves on sand")


# ----------------------------------------------------------------------------
# Duration detection and S3 signing
# ----------------------------------------------------------------------------

@pytest.mark.anyio
async def test_duration_detection_is_advisory():
    manager = DurationManager(ffprobe_path="/nonexistent/ffprobe")
    assert await manager.detect(b"not really audio") is None
    assert await manager.detect(b"") is None


@pytest.mark.anyio
async def test_hung_ffprobe_is_killed_and_reaped(tmp_path, monkeypatch):
    fake_ffprobe = tmp_path / "ffprobe"
    fake_ffprobe.write_text("#!/bin/sh\nexec sleep 30\n")
    fake_ffprobe.chmod(0o755)

    spawned = []
    real_exec = asyncio.create_subprocess_exec

    async def recording_exec(*args, **kwargs):
        process = await real_exec(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_exec)
    manager = DurationManager(ffprobe_path=str(fake_ffprobe), timeout=0.2)

    assert await manager.detect(b"ID3 pretend audio") is None
    assert len(spawned) == 1
    assert spawned[0].returncode is not None


def test_s3_signature_header_shape():
    client = S3Client("https://s3.example.com", "AKID", "secret", "audio-bucket")
    headers = {}
    auth = client._create_signature("PUT", client._path("generated/a.mp3"), headers, b"data")

    assert auth.startswith("AWS4-HMAC-SHA256 Credential=AKID/")
    assert "/auto/s3/aws4_request" in auth
    assert "SignedHeaders=host;x-amz-content-sha256;x-amz-date" in auth
    assert headers["host"] == "s3.example.com"
    assert headers["Authorization"] == auth
