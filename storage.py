# storage.py - audio blob gateway: S3-compatible bucket with a mirrored local directory

import functools
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import aiofiles
import anyio

from config import settings
from config.constants import AUDIO_CONTENT_TYPE
from errors import BlobNotFound, StorageError
from s3_client import S3Client

logger = logging.getLogger(__name__)


# Async filesystem helpers - keep disk calls off the event loop
async def aio_exists(path: Path) -> bool:
    return await anyio.to_thread.run_sync(path.exists)


async def aio_stat(path: Path):
    return await anyio.to_thread.run_sync(path.stat)


async def aio_unlink(path: Path):
    return await anyio.to_thread.run_sync(os.unlink, str(path))


async def aio_mkdir(path: Path, parents: bool = True, exist_ok: bool = True):
    func = functools.partial(path.mkdir, parents=parents, exist_ok=exist_ok)
    return await anyio.to_thread.run_sync(func)


def key_for_job(job_id: str, prefix: Optional[str] = None) -> str:
    """<prefix>/<jobId>.mp3, prefix defaults to S3_PREFIX ("generated")"""
    prefix = (prefix if prefix is not None else settings.S3_PREFIX) or "generated"
    return f"{prefix.strip('/')}/{job_id}.mp3"


def key_for_track(track_id: str) -> str:
    return f"tracks/{track_id}.mp3"


def storage_key_for_ref(ref: Optional[str]) -> Optional[str]:
    """Storage key behind a result/audio ref; external URLs have none"""
    if not ref or ref.startswith(("http://", "https://")):
        return None
    return ref.lstrip("/")


def is_absolute_http_url(value: Optional[str]) -> bool:
    """http(s) URL with a host; the only kind of result ref a client may supply"""
    if not value:
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass
class BlobInfo:
    content_type: str
    length: int


class StorageGateway:
    """
    put/get/head/delete of audio blobs by key.

    When a remote client is configured, writes go to the bucket only and a
    failed write is raised. Reads try the bucket first and fall back to the
    local mirror before reporting BlobNotFound. Deletes are idempotent and
    clear both locations.
    """

    def __init__(self, local_root: Optional[str] = None, remote: Optional[S3Client] = None,
                 prefix: Optional[str] = None):
        self.local_root = Path(local_root or settings.LOCAL_STORAGE_ROOT).resolve()
        self.remote = remote
        self.prefix = prefix if prefix is not None else settings.S3_PREFIX
        logger.info(f"Storage gateway ready: backend={self.backend_name} local_root={self.local_root}")

    @classmethod
    def from_settings(cls) -> "StorageGateway":
        remote = None
        if settings.storage_configured:
            remote = S3Client(
                endpoint=settings.S3_ENDPOINT,
                access_key=settings.S3_ACCESS_KEY_ID,
                secret_key=settings.S3_SECRET_ACCESS_KEY,
                bucket=settings.S3_BUCKET,
                region=settings.S3_REGION,
            )
        return cls(local_root=settings.LOCAL_STORAGE_ROOT, remote=remote)

    @property
    def backend_name(self) -> str:
        return "s3" if self.remote is not None else "local"

    def key_for_job(self, job_id: str) -> str:
        return key_for_job(job_id, self.prefix)

    def key_for_track(self, track_id: str) -> str:
        return key_for_track(track_id)

    def track_audio_keys(self, track) -> List[str]:
        """
        Keys a track may read or delete: its job's generated audio (only when
        the track's ref is exactly that key) and its own tracks/<id>.mp3 copy.
        Stored refs are never used as keys on their own.
        """
        keys = []
        ref_key = storage_key_for_ref(track.audio_ref)
        if ref_key and track.job_id and ref_key == self.key_for_job(track.job_id):
            keys.append(ref_key)
        keys.append(key_for_track(track.id))
        return keys

    async def start(self):
        if self.remote is not None:
            await self.remote.start()

    async def close(self):
        if self.remote is not None:
            await self.remote.close()

    def _local_path(self, key: str) -> Path:
        path = (self.local_root / key.lstrip("/")).resolve()
        if self.local_root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    # ----------------------- write -----------------------

    async def put(self, key: str, data: bytes, content_type: str = AUDIO_CONTENT_TYPE):
        if not data:
            raise StorageError("Refusing to store an empty blob")

        if self.remote is not None:
            try:
                await self.remote.put_object(key, data, content_type=content_type)
            except Exception as e:
                logger.error(f"Remote write failed for {key}: {e}")
                raise StorageError(f"Storage write failed: {e}") from e
            return

        path = self._local_path(key)
        try:
            await aio_mkdir(path.parent)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error(f"Local write failed for {key}: {e}")
            raise StorageError(f"Storage write failed: {e}") from e
        logger.info(f"Stored {key} locally ({len(data)} bytes)")

    # ----------------------- read -----------------------

    async def _read_local(self, key: str) -> Optional[bytes]:
        path = self._local_path(key)
        if not await aio_exists(path):
            return None
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def get(self, key: str) -> bytes:
        if self.remote is not None:
            try:
                data = await self.remote.get_object(key)
                if data is not None:
                    return data
            except Exception as e:
                logger.warning(f"Remote read failed for {key}, trying local disk: {e}")

        data = await self._read_local(key)
        if data is None:
            raise BlobNotFound(f"Audio not found: {key}")
        return data

    async def head(self, key: str) -> BlobInfo:
        if self.remote is not None:
            try:
                info = await self.remote.head_object(key)
                if info is not None:
                    return BlobInfo(
                        content_type=info.get("content_type") or AUDIO_CONTENT_TYPE,
                        length=int(info.get("length") or 0),
                    )
            except Exception as e:
                logger.warning(f"Remote head failed for {key}, trying local disk: {e}")

        path = self._local_path(key)
        if not await aio_exists(path):
            raise BlobNotFound(f"Audio not found: {key}")
        stat = await aio_stat(path)
        return BlobInfo(content_type=AUDIO_CONTENT_TYPE, length=stat.st_size)

    async def exists(self, key: str) -> bool:
        try:
            await self.head(key)
            return True
        except BlobNotFound:
            return False

    # ----------------------- delete -----------------------

    async def delete(self, key: str):
        """Absent objects are not an error"""
        if self.remote is not None:
            try:
                await self.remote.delete_object(key)
            except Exception as e:
                raise StorageError(f"Storage delete failed for {key}: {e}") from e

        path = self._local_path(key)
        try:
            await aio_unlink(path)
            logger.info(f"Deleted local blob {key}")
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Local delete failed for {key}: {e}") from e


__all__ = [
    'StorageGateway',
    'BlobInfo',
    'key_for_job',
    'key_for_track',
    'storage_key_for_ref',
    'is_absolute_http_url',
]
