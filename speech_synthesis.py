# speech_synthesis.py - prompt + preset in, MP3 bytes out
"""
SpeechSynthesisAdapter builds the spoken script, resolves a voice and calls
one provider:

- ElevenLabsProvider (httpx) when ELEVENLABS_API_KEY is configured
- EdgeTTSProvider (edge-tts) otherwise

Every call is bounded by a timeout. Any provider error, timeout or empty
response surfaces as SynthesisError.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import edge_tts
import httpx

from config import settings
from config.constants import AUDIO_CONTENT_TYPE
from errors import SynthesisError
from script_builder import (
    CLASSIC_ASMR,
    MEDITATION,
    SLEEP_STORY,
    build_script,
    whisper_prefix_for_preset,
)

logger = logging.getLogger(__name__)

DEFAULT_V2_STABILITY = 0.4
DEFAULT_V3_STABILITY = 0.5


@dataclass
class SynthesisResult:
    audio: bytes
    content_type: str = AUDIO_CONTENT_TYPE
    duration_sec: Optional[float] = None
    voice_id: Optional[str] = None


# ============================================================================
# VOICE PARAMETERS
# ============================================================================

def is_v3_model(model_id: str) -> bool:
    return "eleven_v3" in (model_id or "").lower()


def normalize_stability(model_id: str, stability: Optional[float] = None) -> float:
    """v3 models accept only 0.0 / 0.5 / 1.0; v2 models take any value"""
    if is_v3_model(model_id):
        if stability is None or stability != stability:
            return DEFAULT_V3_STABILITY
        if stability < 0.25:
            return 0.0
        if stability < 0.75:
            return 0.5
        return 1.0
    return DEFAULT_V2_STABILITY if stability is None else stability


def resolve_voice_id(preset: Optional[str], voice_style: str = "soft",
                     voice_gender: str = "female", explicit_voice_id: Optional[str] = None) -> str:
    """Explicit id wins; otherwise pick by preset (and style/gender for ASMR)"""
    if explicit_voice_id and explicit_voice_id.strip():
        return explicit_voice_id.strip()

    default = settings.ELEVENLABS_VOICE_ID
    if preset == SLEEP_STORY:
        return settings.ELEVENLABS_VOICE_SLEEP_STORY_ID or default
    if preset == CLASSIC_ASMR:
        if voice_gender == "male":
            if voice_style == "whisper":
                return settings.ELEVENLABS_VOICE_ASMR_WHISPER_MALE_ID or default
            return settings.ELEVENLABS_VOICE_ASMR_SOFT_MALE_ID or default
        if voice_style == "whisper":
            return settings.ELEVENLABS_VOICE_ASMR_WHISPER_FEMALE_ID or default
        return settings.ELEVENLABS_VOICE_ASMR_SOFT_FEMALE_ID or default
    if preset == MEDITATION:
        return settings.ELEVENLABS_VOICE_MEDITATION_ID or default
    return default


# ============================================================================
# PROVIDERS
# ============================================================================

class ElevenLabsProvider:
    name = "elevenlabs"

    def __init__(self, api_key: str, base_url: str = "https://api.elevenlabs.io",
                 model_id: str = "eleven_multilingual_v2",
                 client: Optional[httpx.AsyncClient] = None):
        if not api_key:
            raise ValueError("ELEVENLABS_API_KEY is required for the ElevenLabs provider")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id
        self._client = client

    def build_request(self, text: str, voice_id: str, stability: Optional[float] = None) -> dict:
        return {
            "url": f"{self.base_url}/v1/text-to-speech/{voice_id}",
            "headers": {
                "xi-api-key": self.api_key,
                "Content-Type": "application/json",
                "Accept": AUDIO_CONTENT_TYPE,
            },
            "json": {
                "text": text,
                "model_id": self.model_id,
                "voice_settings": {
                    "stability": normalize_stability(self.model_id, stability),
                    "similarity_boost": 0.8,
                    "style": 0,
                    "use_speaker_boost": True,
                    "speed": 1.0,
                },
            },
        }

    async def speak(self, text: str, voice_id: str) -> SynthesisResult:
        request = self.build_request(text, voice_id)
        logger.info(f"ElevenLabs request: model={self.model_id} voice={voice_id} chars={len(text)}")

        if self._client is not None:
            response = await self._client.post(request["url"], headers=request["headers"], json=request["json"])
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(settings.TTS_TIMEOUT_SECONDS)) as client:
                response = await client.post(request["url"], headers=request["headers"], json=request["json"])

        if response.status_code != 200:
            raise SynthesisError(
                f"ElevenLabs TTS failed: {response.status_code} {response.text[:200]}"
            )
        return SynthesisResult(
            audio=response.content,
            content_type=response.headers.get("content-type", AUDIO_CONTENT_TYPE),
            voice_id=voice_id,
        )


class EdgeTTSProvider:
    name = "edge-tts"

    def __init__(self, default_voice: str = "en-US-AvaNeural"):
        self.default_voice = default_voice

    async def speak(self, text: str, voice_id: Optional[str] = None) -> SynthesisResult:
        voice = voice_id or self.default_voice
        communicate = edge_tts.Communicate(text, voice)

        audio_chunks = []
        last_boundary_end = 0.0
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio_chunks.append(chunk["data"])
            elif chunk["type"] in ("WordBoundary", "SentenceBoundary"):
                end = (chunk["offset"] + chunk.get("duration", 0)) / 10_000_000
                last_boundary_end = max(last_boundary_end, end)

        return SynthesisResult(
            audio=b"".join(audio_chunks),
            duration_sec=last_boundary_end or None,
            voice_id=voice,
        )


# ============================================================================
# ADAPTER
# ============================================================================

class SpeechSynthesisAdapter:
    def __init__(self, provider=None, timeout: Optional[float] = None):
        if provider is None:
            if settings.ELEVENLABS_API_KEY:
                provider = ElevenLabsProvider(
                    api_key=settings.ELEVENLABS_API_KEY,
                    base_url=settings.ELEVENLABS_BASE_URL,
                    model_id=settings.ELEVENLABS_MODEL_ID,
                )
            else:
                provider = EdgeTTSProvider(default_voice=settings.EDGE_TTS_VOICE)
        self.provider = provider
        self.timeout = timeout if timeout is not None else settings.TTS_TIMEOUT_SECONDS
        logger.info(f"Speech synthesis provider: {getattr(provider, 'name', type(provider).__name__)}")

    def _voice_for(self, preset: Optional[str], voice_style: str, voice_gender: str) -> Optional[str]:
        if isinstance(self.provider, EdgeTTSProvider):
            return None
        return resolve_voice_id(preset, voice_style, voice_gender)

    async def synthesize(self, prompt: str, preset: Optional[str] = None,
                         requested_duration_sec: Optional[float] = None,
                         voice_style: str = "soft", voice_gender: str = "female") -> SynthesisResult:
        script = build_script(prompt, preset, requested_duration_sec)
        text = script.text
        if isinstance(self.provider, ElevenLabsProvider):
            text = whisper_prefix_for_preset(preset) + text

        voice_id = self._voice_for(preset, voice_style, voice_gender)
        try:
            result = await asyncio.wait_for(self.provider.speak(text, voice_id), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Speech synthesis timed out after {self.timeout}s")
            raise SynthesisError(f"Speech synthesis timed out after {self.timeout:g}s") from e
        except SynthesisError:
            raise
        except Exception as e:
            logger.error(f"Speech synthesis failed: {e}")
            raise SynthesisError(f"Speech synthesis failed: {e}") from e

        if not result.audio:
            raise SynthesisError("Speech synthesis returned no audio")
        if result.duration_sec is None:
            result.duration_sec = float(script.estimated_seconds)

        logger.info(f"Synthesized {len(result.audio)} bytes, ~{result.duration_sec:.1f}s, preset={preset}")
        return result


__all__ = [
    'SynthesisResult',
    'SpeechSynthesisAdapter',
    'ElevenLabsProvider',
    'EdgeTTSProvider',
    'resolve_voice_id',
    'normalize_stability',
    'is_v3_model',
]
