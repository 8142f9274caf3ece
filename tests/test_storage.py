from types import SimpleNamespace

import pytest

from errors import BlobNotFound, StorageError
from storage import StorageGateway, is_absolute_http_url, key_for_job, key_for_track, storage_key_for_ref

pytestmark = pytest.mark.anyio


class FakeRemote:
    """In-memory stand-in for S3Client"""

    def __init__(self, fail_writes=False, fail_reads=False):
        self.objects = {}
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads

    async def start(self):
        pass

    async def close(self):
        pass

    async def put_object(self, key, data, content_type="audio/mpeg"):
        if self.fail_writes:
            raise RuntimeError("bucket unavailable")
        self.objects[key] = (data, content_type)
        return True

    async def get_object(self, key):
        if self.fail_reads:
            raise RuntimeError("bucket unavailable")
        entry = self.objects.get(key)
        return entry[0] if entry else None

    async def head_object(self, key):
        if self.fail_reads:
            raise RuntimeError("bucket unavailable")
        entry = self.objects.get(key)
        if entry is None:
            return None
        return {"content_type": entry[1], "length": len(entry[0])}

    async def delete_object(self, key):
        self.objects.pop(key, None)
        return True


def test_key_derivation():
    assert key_for_job("abc", "generated") == "generated/abc.mp3"
    assert key_for_job("abc", "/custom/") == "custom/abc.mp3"
    assert key_for_track("t1") == "tracks/t1.mp3"
    assert storage_key_for_ref("/generated/a.mp3") == "generated/a.mp3"
    assert storage_key_for_ref("https://cdn.example.com/a.mp3") is None
    assert storage_key_for_ref(None) is None


def test_only_absolute_http_urls_count_as_external():
    assert is_absolute_http_url("https://cdn.example.com/a.mp3")
    assert is_absolute_http_url(" http://cdn.example.com/a.mp3 ")
    assert not is_absolute_http_url("generated/a.mp3")
    assert not is_absolute_http_url("https://")
    assert not is_absolute_http_url("ftp://cdn.example.com/a.mp3")
    assert not is_absolute_http_url(None)


def test_track_audio_keys_are_derived_from_ids(storage):
    own = SimpleNamespace(id="t1", job_id="j1", audio_ref="generated/j1.mp3")
    assert storage.track_audio_keys(own) == ["generated/j1.mp3", "tracks/t1.mp3"]

    foreign = SimpleNamespace(id="t2", job_id="j2", audio_ref="generated/j1.mp3")
    assert storage.track_audio_keys(foreign) == ["tracks/t2.mp3"]

    external = SimpleNamespace(id="t3", job_id="j3", audio_ref="https://cdn.example.com/a.mp3")
    assert storage.track_audio_keys(external) == ["tracks/t3.mp3"]


async def test_local_put_get_head_delete(storage):
    key = storage.key_for_job("job-1")
    await storage.put(key, b"mp3-bytes")

    assert await storage.get(key) == b"mp3-bytes"
    info = await storage.head(key)
    assert info.length == len(b"mp3-bytes")
    assert info.content_type == "audio/mpeg"
    assert (storage.local_root / "generated" / "job-1.mp3").exists()

    await storage.delete(key)
    assert not await storage.exists(key)
    # Deleting again is fine
    await storage.delete(key)


async def test_missing_blob_is_not_found(storage):
    with pytest.raises(BlobNotFound):
        await storage.get("generated/nope.mp3")
    with pytest.raises(BlobNotFound):
        await storage.head("generated/nope.mp3")


async def test_empty_blob_is_refused(storage):
    with pytest.raises(StorageError):
        await storage.put("generated/empty.mp3", b"")


async def test_keys_cannot_escape_the_root(storage):
    with pytest.raises(StorageError):
        await storage.put("../../etc/evil.mp3", b"x")


async def test_remote_write_goes_to_bucket_only(tmp_path):
    remote = FakeRemote()
    gateway = StorageGateway(local_root=str(tmp_path), remote=remote, prefix="generated")
    assert gateway.backend_name == "s3"

    await gateway.put("generated/a.mp3", b"remote-bytes")
    assert remote.objects["generated/a.mp3"][0] == b"remote-bytes"
    assert not (tmp_path / "generated" / "a.mp3").exists()
    assert await gateway.get("generated/a.mp3") == b"remote-bytes"


async def test_remote_write_failure_is_raised_without_local_copy(tmp_path):
    gateway = StorageGateway(local_root=str(tmp_path), remote=FakeRemote(fail_writes=True))
    with pytest.raises(StorageError):
        await gateway.put("generated/a.mp3", b"bytes")
    assert not (tmp_path / "generated" / "a.mp3").exists()


async def test_reads_fall_back_to_local_disk(tmp_path):
    (tmp_path / "generated").mkdir()
    (tmp_path / "generated" / "old.mp3").write_bytes(b"legacy")

    for remote in (FakeRemote(), FakeRemote(fail_reads=True)):
        gateway = StorageGateway(local_root=str(tmp_path), remote=remote)
        assert await gateway.get("generated/old.mp3") == b"legacy"
        assert (await gateway.head("generated/old.mp3")).length == 6


async def test_delete_clears_both_locations(tmp_path):
    remote = FakeRemote()
    remote.objects["generated/x.mp3"] = (b"r", "audio/mpeg")
    (tmp_path / "generated").mkdir()
    (tmp_path / "generated" / "x.mp3").write_bytes(b"l")

    gateway = StorageGateway(local_root=str(tmp_path), remote=remote)
    await gateway.delete("generated/x.mp3")
    assert "generated/x.mp3" not in remote.objects
    assert not (tmp_path / "generated" / "x.mp3").exists()
