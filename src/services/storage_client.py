"""S3-compatible object storage client for video artifacts.

Uses boto3 with path-style addressing against a single bucket (Wasabi by
default). Objects are addressable by key as soon as ``put`` returns.

Features:
- Async put with byte-level progress callbacks
- Presigned GET URLs
- Small text downloads for playlist rewriting
- HEAD-based existence checks
- botocore failures classified into network / access denied / not found
"""

import asyncio
import logging
import time
import uuid
from io import BytesIO
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectionError as BotoConnectionError

from services.errors import (
    StorageAccessDeniedError,
    StorageError,
    StorageNetworkError,
    StorageNotFoundError,
)

logger = logging.getLogger(__name__)

HLS_PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
HLS_SEGMENT_CONTENT_TYPE = "video/mp2t"

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}
_ACCESS_DENIED_CODES = {
    "AccessDenied",
    "403",
    "Forbidden",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "AccountProblem",
}
_TRANSIENT_CODES = {
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "500",
    "502",
    "503",
    "504",
}

ByteProgressCallback = Callable[[int], None]


def classify_storage_error(exc: Exception, key: Optional[str] = None) -> StorageError:
    """Translate a botocore exception into the StorageError taxonomy."""
    if isinstance(exc, ClientError):
        code = str(exc.response.get("Error", {}).get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{code or status}: {exc}"

        if code in _NOT_FOUND_CODES or status == 404:
            return StorageNotFoundError(message, key=key)
        if code in _ACCESS_DENIED_CODES or status == 403:
            return StorageAccessDeniedError(message, key=key)
        if code in _TRANSIENT_CODES or (status is not None and status >= 500):
            return StorageNetworkError(message, key=key)
        return StorageError(message, key=key)

    # EndpointConnectionError, ReadTimeoutError, ConnectTimeoutError, ...
    if isinstance(exc, (BotoConnectionError, ConnectionError, TimeoutError)):
        return StorageNetworkError(str(exc), key=key)

    return StorageError(str(exc), key=key)


def generate_object_prefix(
    user_id: str,
    suffix: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> str:
    """Collision-resistant key stem: ``{userId}/{timestamp}-{random}[-suffix]``."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    random_part = uuid.uuid4().hex[:8]
    stem = f"{user_id}/{timestamp}-{random_part}"
    return f"{stem}-{suffix}" if suffix else stem


def generate_object_key(
    user_id: str,
    extension: str,
    suffix: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> str:
    """Object key ``{userId}/{timestamp}-{random}[-suffix].{ext}``."""
    return f"{generate_object_prefix(user_id, suffix, now_ms)}.{extension.lstrip('.')}"


class ObjectStorageClient:
    """S3-compatible object storage service.

    Blocking boto3 calls run in a worker thread so callers stay on the event
    loop; progress callbacks are marshalled back onto the loop.
    """

    def __init__(
        self,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str,
        region: str = "us-central-1",
        client=None,
    ):
        """Initialize the storage client.

        Args:
            endpoint_url: S3 endpoint (e.g., https://s3.us-central-1.wasabisys.com)
            access_key_id: Access key ID
            secret_access_key: Secret access key
            bucket_name: Bucket holding every object of this deployment
            region: Bucket region
            client: Pre-built boto3 S3 client (tests)
        """
        self.endpoint_url = endpoint_url.rstrip("/")
        self.bucket_name = bucket_name
        self.region = region

        # Retries are handled per artifact by the orchestrator
        self._client = client or boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )

        logger.info(f"Object storage initialized for bucket: {bucket_name}")

    @classmethod
    def from_config(cls, config: dict) -> "ObjectStorageClient":
        return cls(
            endpoint_url=config["storage_endpoint"],
            access_key_id=config["storage_access_key_id"],
            secret_access_key=config["storage_secret_access_key"],
            bucket_name=config["storage_bucket"],
            region=config.get("storage_region", "us-central-1"),
        )

    def object_url(self, key: str) -> str:
        """Durable path-style URL of an object: ``{endpoint}/{bucket}/{key}``."""
        return f"{self.endpoint_url}/{self.bucket_name}/{key}"

    def key_from_url(self, url: str) -> str:
        """Extract the object key from a stored or signed URL of this bucket.

        Accepts path-style URLs on the configured endpoint (bucket as first
        path segment) and virtual-hosted URLs (bucket in the host name).

        Raises:
            ValueError: If the URL points elsewhere or carries no key
        """
        parsed = urlparse(url)
        endpoint_host = urlparse(self.endpoint_url).netloc.lower()
        host = parsed.netloc.lower()
        parts = [unquote(p) for p in parsed.path.split("/") if p]

        if host == endpoint_host:
            if not parts or parts[0] != self.bucket_name:
                raise ValueError(f"URL is not in bucket {self.bucket_name}: {url}")
            parts = parts[1:]
        elif host != f"{self.bucket_name}.{endpoint_host}".lower():
            raise ValueError(f"URL is not on the storage endpoint: {url}")

        key = "/".join(parts)
        if not key:
            raise ValueError(f"Could not extract object key from URL: {url}")
        return key

    async def put(
        self,
        key: str,
        data: bytes | str,
        content_type: str,
        on_progress: Optional[ByteProgressCallback] = None,
        cache_control: Optional[str] = None,
        inline: bool = False,
    ) -> str:
        """Upload an object and return its durable URL.

        Args:
            key: Object key
            data: Object body (str is UTF-8 encoded)
            content_type: MIME type
            on_progress: Called on the event loop with each transferred byte increment
            cache_control: Optional Cache-Control header
            inline: Set ``Content-Disposition: inline``

        Raises:
            StorageError: Classified storage failure
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        extra_args = {"ContentType": content_type}
        if cache_control:
            extra_args["CacheControl"] = cache_control
        if inline:
            extra_args["ContentDisposition"] = "inline"

        callback = None
        if on_progress is not None:
            loop = asyncio.get_running_loop()

            def callback(bytes_transferred: int) -> None:
                loop.call_soon_threadsafe(on_progress, bytes_transferred)

        def upload() -> None:
            self._client.upload_fileobj(
                BytesIO(data),
                self.bucket_name,
                key,
                ExtraArgs=extra_args,
                Callback=callback,
            )

        try:
            await asyncio.to_thread(upload)
        except (ClientError, BotoCoreError, ConnectionError, TimeoutError) as e:
            error = classify_storage_error(e, key)
            logger.error(f"Failed to upload {key} ({error.kind}): {e}")
            raise error from e

        logger.debug(f"Uploaded {key} ({len(data)} bytes)")
        return self.object_url(key)

    async def exists(self, key: str) -> bool:
        """Check whether an object exists (HEAD).

        Raises:
            StorageError: Any failure other than not found
        """
        try:
            await asyncio.to_thread(
                self._client.head_object, Bucket=self.bucket_name, Key=key
            )
            return True
        except (ClientError, BotoCoreError) as e:
            error = classify_storage_error(e, key)
            if isinstance(error, StorageNotFoundError):
                return False
            raise error from e

    async def get_text(self, key: str) -> str:
        """Download a small UTF-8 object such as a playlist.

        Raises:
            StorageError: Classified failure (StorageNotFoundError if absent)
        """

        def download() -> bytes:
            response = self._client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()

        try:
            data = await asyncio.to_thread(download)
        except (ClientError, BotoCoreError, ConnectionError, TimeoutError) as e:
            raise classify_storage_error(e, key) from e
        return data.decode("utf-8")

    def presign_get(self, key: str, expires_in: int) -> str:
        """Generate a presigned GET URL valid for ``expires_in`` seconds.

        Signing is a local computation, so this stays synchronous.

        Raises:
            StorageError: If the URL cannot be generated
        """
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned URL for {key}: {e}")
            raise classify_storage_error(e, key) from e

    async def check_bucket(self) -> None:
        """Verify the bucket is reachable with the configured credentials.

        Raises:
            StorageError: Classified failure
        """
        try:
            await asyncio.to_thread(self._client.head_bucket, Bucket=self.bucket_name)
        except (ClientError, BotoCoreError) as e:
            raise classify_storage_error(e) from e
