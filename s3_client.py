# s3_client.py - S3-compatible object storage client (SigV4 over aiohttp) with retry

import asyncio
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import quote

import aiohttp

logger = logging.getLogger(__name__)


def _is_retryable_status(status: int) -> bool:
    # Typical transient statuses for S3-style services
    return status in (429, 500, 502, 503, 504)


class S3Client:
    """Minimal path-style S3 client: put, get, head and delete of whole objects"""

    def __init__(self, endpoint: str, access_key: str, secret_key: str, bucket: str,
                 region: str = "auto", max_retries: int = 2, retry_delay: float = 0.5):
        if not access_key or not secret_key:
            raise ValueError("Missing S3 credentials")
        self.endpoint = endpoint.rstrip("/")
        self.access_key = access_key
        self.secret_key = secret_key
        self.bucket_name = bucket
        self.region = region
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self.session: Optional[aiohttp.ClientSession] = None
        logger.info(f"S3 client initialized: bucket={bucket} region={region} endpoint={self.endpoint}")

    # ----------------------- lifecycle -----------------------

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=300, connect=15, sock_read=120)
            )

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _ensure_started(self):
        if self.session is None:
            await self.start()

    # ----------------------- signing -------------------------

    def _create_signature(self, method: str, path: str, headers: Dict[str, str],
                          payload: bytes = b"") -> str:
        """AWS Signature Version 4 over the canonical request"""
        now = datetime.now(timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = now.strftime("%Y%m%d")

        payload_hash = hashlib.sha256(payload).hexdigest()

        headers["x-amz-date"] = amz_date
        headers["x-amz-content-sha256"] = payload_hash
        headers["host"] = self.endpoint.replace("https://", "").replace("http://", "")

        canonical_uri = quote(path, safe="/")

        canonical_headers = ""
        signed_headers_list = []
        for key in sorted(headers.keys(), key=str.lower):
            key_lower = key.lower()
            canonical_headers += f"{key_lower}:{headers[key].strip()}\n"
            signed_headers_list.append(key_lower)

        signed_headers = ";".join(signed_headers_list)
        canonical_request = (
            f"{method}\n{canonical_uri}\n\n"
            f"{canonical_headers}\n{signed_headers}\n{payload_hash}"
        )

        algorithm = "AWS4-HMAC-SHA256"
        credential_scope = f"{date_stamp}/{self.region}/s3/aws4_request"
        string_to_sign = (
            f"{algorithm}\n{amz_date}\n{credential_scope}\n"
            f"{hashlib.sha256(canonical_request.encode()).hexdigest()}"
        )

        def sign(key, msg):
            return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()

        k_date = sign(("AWS4" + self.secret_key).encode("utf-8"), date_stamp)
        k_region = sign(k_date, self.region)
        k_service = sign(k_region, "s3")
        k_signing = sign(k_service, "aws4_request")
        signature = hmac.new(k_signing, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

        authorization_header = (
            f"{algorithm} Credential={self.access_key}/{credential_scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        headers["Authorization"] = authorization_header
        return authorization_header

    def _path(self, object_key: str) -> str:
        return f"/{self.bucket_name}/{object_key}"

    async def _with_retry(self, op_name: str, action):
        """Retry transient HTTP statuses and network errors with exponential backoff"""
        last_err: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await action()
            except aiohttp.ClientResponseError as e:
                last_err = e
                if not _is_retryable_status(e.status):
                    raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_err = e
            if attempt < self.max_retries:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(f"{op_name} attempt {attempt}/{self.max_retries} failed: {last_err}; retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
        raise last_err

    @staticmethod
    async def _raise_for(response: aiohttp.ClientResponse):
        text = await response.text()
        raise aiohttp.ClientResponseError(
            request_info=response.request_info,
            history=response.history,
            status=response.status,
            message=text[:300],
        )

    # ----------------------- API methods -----------------------

    async def put_object(self, object_key: str, data: bytes,
                         content_type: str = "application/octet-stream") -> bool:
        await self._ensure_started()

        async def _do():
            headers = {"Content-Type": content_type, "Content-Length": str(len(data))}
            path = self._path(object_key)
            self._create_signature("PUT", path, headers, payload=data)
            async with self.session.put(f"{self.endpoint}{path}", headers=headers, data=data) as response:
                if response.status in (200, 201):
                    logger.info(f"Uploaded {object_key} ({len(data)} bytes)")
                    return True
                await self._raise_for(response)

        return await self._with_retry("put_object", _do)

    async def get_object(self, object_key: str) -> Optional[bytes]:
        """Whole object body, or None on 404"""
        await self._ensure_started()

        async def _do():
            headers: Dict[str, str] = {}
            path = self._path(object_key)
            self._create_signature("GET", path, headers)
            async with self.session.get(f"{self.endpoint}{path}", headers=headers) as response:
                if response.status == 200:
                    return await response.read()
                if response.status == 404:
                    return None
                await self._raise_for(response)

        return await self._with_retry("get_object", _do)

    async def head_object(self, object_key: str) -> Optional[Dict[str, object]]:
        """{content_type, length} or None on 404"""
        await self._ensure_started()

        async def _do():
            headers: Dict[str, str] = {}
            path = self._path(object_key)
            self._create_signature("HEAD", path, headers)
            async with self.session.head(f"{self.endpoint}{path}", headers=headers) as response:
                if response.status == 200:
                    return {
                        "content_type": response.headers.get("Content-Type"),
                        "length": int(response.headers.get("Content-Length", 0)),
                    }
                if response.status == 404:
                    return None
                await self._raise_for(response)

        return await self._with_retry("head_object", _do)

    async def delete_object(self, object_key: str) -> bool:
        """404 counts as deleted"""
        await self._ensure_started()

        async def _do():
            headers: Dict[str, str] = {}
            path = self._path(object_key)
            self._create_signature("DELETE", path, headers)
            async with self.session.delete(f"{self.endpoint}{path}", headers=headers) as response:
                if response.status in (200, 204, 404):
                    logger.info(f"Deleted object {object_key} (status {response.status})")
                    return True
                await self._raise_for(response)

        return await self._with_retry("delete_object", _do)


__all__ = ['S3Client']
