# models.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from job_status_manager import JobStatus

logger = logging.getLogger(__name__)


def generate_uuid() -> str:
    """Generate a UUID for unique identifiers"""
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String, unique=True, index=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    credits = Column(Integer, default=0, nullable=False)
    external_customer_ref = Column(String, unique=True, nullable=True)
    external_subscription_ref = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    jobs = relationship("Job", back_populates="owner", cascade="all, delete-orphan")
    tracks = relationship("Track", back_populates="owner", cascade="all, delete-orphan")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")

    # Non-admin balances never go below zero; admins are never charged
    __table_args__ = (
        CheckConstraint("credits >= 0", name="check_user_credits_non_negative"),
    )

    @property
    def has_subscription(self) -> bool:
        return bool(self.external_subscription_ref)


class UserSession(Base):
    """Opaque session id issued by the auth provider, resolved to a user"""
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), unique=True, index=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_active = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="sessions")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(80), nullable=False)
    prompt = Column(Text, nullable=False)
    preset = Column(String(50), nullable=True)
    requested_duration_sec = Column(Integer, nullable=True)

    # QUEUED | PROCESSING | DONE | FAILED (see job_status_manager)
    status = Column(
        String(20),
        nullable=False,
        default=JobStatus.QUEUED.value,
        server_default=JobStatus.QUEUED.value,
        index=True,
    )
    result_ref = Column(String(500), nullable=True)
    error = Column(Text, nullable=True)
    duration_sec = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", back_populates="jobs")

    __table_args__ = (
        CheckConstraint(
            "status IN ('QUEUED','PROCESSING','DONE','FAILED')",
            name="check_job_status",
        ),
        Index("ix_jobs_user_created", "user_id", "created_at"),
    )

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def audio_url(self):
        """Client-facing URL for stored audio; external result URLs pass through"""
        if not self.result_ref:
            return None
        if self.result_ref.startswith(("http://", "https://")):
            return self.result_ref
        return f"/jobs/{self.id}/audio"

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "title": self.title,
            "prompt": self.prompt,
            "preset": self.preset,
            "resultUrl": self.audio_url,
            "durationSec": self.duration_sec,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def to_detail(self) -> dict:
        detail = self.to_summary()
        detail.update({
            "resultRef": self.result_ref,
            "error": self.error,
            "requestedDurationSec": self.requested_duration_sec,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        })
        return detail


class Story(Base):
    """Optional grouping of multi-part narrations"""
    __tablename__ = "stories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(140), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Track(Base):
    __tablename__ = "tracks"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Non-owning back-reference; cascade is done explicitly by the job service
    job_id = Column(String(36), nullable=True, index=True)
    title = Column(String(140), nullable=False)
    audio_ref = Column(String(500), nullable=False)
    duration_seconds = Column(Float, nullable=True)

    is_public = Column(Boolean, default=False, nullable=False)
    share_slug = Column(String(32), unique=True, nullable=True)

    story_id = Column(String(36), ForeignKey("stories.id", ondelete="SET NULL"), nullable=True, index=True)
    part_index = Column(Integer, nullable=True)
    part_title = Column(String(140), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", back_populates="tracks")

    __table_args__ = (
        UniqueConstraint("user_id", "audio_ref", name="uq_tracks_user_audio_ref"),
        Index("ix_tracks_user_created", "user_id", "created_at", "id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "jobId": self.job_id,
            "durationSeconds": self.duration_seconds,
            "isPublic": self.is_public,
            "shareSlug": self.share_slug if self.is_public else None,
            "storyId": self.story_id,
            "partIndex": self.part_index,
            "partTitle": self.part_title,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


__all__ = [
    'generate_uuid',
    'utcnow',
    'User',
    'UserSession',
    'Job',
    'Story',
    'Track',
]
