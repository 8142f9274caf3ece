"""
Environment-Specific Settings

Settings that change between development, staging, and production.
Uses environment variables with sensible defaults.

Usage:
    from config import settings

    print(settings.DATABASE_URL)
    print(settings.storage_configured)
"""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """
    Application settings loaded from environment variables.

    These values change between environments (dev/staging/prod).
    For constants that never change, use config/constants.py instead.
    """

    # ========================================================================
    # ENVIRONMENT
    # ========================================================================

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


    # ========================================================================
    # DATABASE
    # ========================================================================

    DB_USER: str = os.getenv("DB_USER", "postgres")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: str = os.getenv("DB_PORT", "5432")
    DB_NAME: str = os.getenv("DB_NAME", "softvibe")
    DATABASE_URL_OVERRIDE: Optional[str] = os.getenv("DATABASE_URL")

    @property
    def DATABASE_URL(self) -> str:
        """Explicit DATABASE_URL wins, otherwise build one from components"""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


    # ========================================================================
    # SECURITY
    # ========================================================================

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-this-in-production")
    JOB_SYSTEM_SECRET: Optional[str] = os.getenv("JOB_SYSTEM_SECRET")
    SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "session_id")


    # ========================================================================
    # OBJECT STORAGE (S3-compatible)
    # ========================================================================

    S3_ENDPOINT: Optional[str] = os.getenv("S3_ENDPOINT")
    S3_ACCESS_KEY_ID: Optional[str] = os.getenv("S3_ACCESS_KEY_ID")
    S3_SECRET_ACCESS_KEY: Optional[str] = os.getenv("S3_SECRET_ACCESS_KEY")
    S3_BUCKET: Optional[str] = os.getenv("S3_BUCKET")
    S3_REGION: str = os.getenv("S3_REGION", "auto")
    S3_PREFIX: str = os.getenv("S3_PREFIX", "generated")

    LOCAL_STORAGE_ROOT: str = os.getenv("LOCAL_STORAGE_ROOT", "./public")

    @property
    def storage_configured(self) -> bool:
        """Remote storage is used only when every credential is present"""
        return all([
            self.S3_ENDPOINT,
            self.S3_ACCESS_KEY_ID,
            self.S3_SECRET_ACCESS_KEY,
            self.S3_BUCKET,
        ])


    # ========================================================================
    # SPEECH SYNTHESIS
    # ========================================================================

    ELEVENLABS_API_KEY: Optional[str] = os.getenv("ELEVENLABS_API_KEY")
    ELEVENLABS_BASE_URL: str = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io")
    ELEVENLABS_MODEL_ID: str = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")
    ELEVENLABS_VOICE_ID: str = os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
    ELEVENLABS_VOICE_SLEEP_STORY_ID: Optional[str] = os.getenv("ELEVENLABS_VOICE_SLEEP_STORY_ID")
    ELEVENLABS_VOICE_MEDITATION_ID: Optional[str] = os.getenv("ELEVENLABS_VOICE_MEDITATION_ID")
    ELEVENLABS_VOICE_ASMR_SOFT_FEMALE_ID: Optional[str] = os.getenv("ELEVENLABS_VOICE_ASMR_SOFT_FEMALE_ID")
    ELEVENLABS_VOICE_ASMR_WHISPER_FEMALE_ID: Optional[str] = os.getenv("ELEVENLABS_VOICE_ASMR_WHISPER_FEMALE_ID")
    ELEVENLABS_VOICE_ASMR_SOFT_MALE_ID: Optional[str] = os.getenv("ELEVENLABS_VOICE_ASMR_SOFT_MALE_ID")
    ELEVENLABS_VOICE_ASMR_WHISPER_MALE_ID: Optional[str] = os.getenv("ELEVENLABS_VOICE_ASMR_WHISPER_MALE_ID")

    EDGE_TTS_VOICE: str = os.getenv("EDGE_TTS_VOICE", "en-US-AvaNeural")
    TTS_TIMEOUT_SECONDS: float = float(os.getenv("TTS_TIMEOUT_SECONDS", "60"))


    # ========================================================================
    # PROMPT IMPROVEMENT (OpenAI chat model)
    # ========================================================================

    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL: Optional[str] = os.getenv("OPENAI_BASE_URL")
    OPENAI_IMPROVE_MODEL: str = os.getenv("OPENAI_IMPROVE_MODEL", "gpt-4o-mini")
    OPENAI_TIMEOUT_SECONDS: float = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "30"))


    # ========================================================================
    # SERVER
    # ========================================================================

    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    ALLOWED_ORIGINS: list = os.getenv(
        "ALLOWED_ORIGINS",
        "*"
    ).split(",")


    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.ENVIRONMENT.lower() == "development"

    def validate(self):
        """Validate required settings are present"""
        if self.is_production:
            assert self.SECRET_KEY != "change-this-in-production", \
                "SECRET_KEY must be changed in production!"
            assert self.JOB_SYSTEM_SECRET, \
                "JOB_SYSTEM_SECRET must be set in production!"


# Create singleton instance
settings = Settings()

# Validate on import
if settings.ENVIRONMENT != "test":
    settings.validate()


__all__ = ['settings', 'Settings']
