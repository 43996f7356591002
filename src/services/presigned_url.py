"""Presigned-access resolver: stored object URL -> short-lived signed URL.

The cache is an explicitly constructed object, created once per process and
handed to whoever needs it (API app state, CLI). Concurrent readers share it;
regeneration for one key is serialized by a per-key lock.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urljoin

from services.errors import StorageError
from services.storage_client import ObjectStorageClient
from utils.config import MAX_PRESIGN_EXPIRY_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN_SECONDS = 30 * 60


@dataclass(frozen=True)
class PresignedUrlCacheEntry:
    object_key: str
    signed_url: str
    expires_at_epoch_ms: int


class PresignedUrlResolver:
    """Maps stored object URLs to cached presigned GET URLs.

    An entry is served from cache while it has more than the safety margin
    left before expiry. After an observed 403 the caller uses
    ``refresh_if_needed(url, force=True)`` to regenerate.
    """

    def __init__(
        self,
        storage: ObjectStorageClient,
        expiry_seconds: int = MAX_PRESIGN_EXPIRY_SECONDS,
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the resolver.

        Args:
            storage: Storage client used to parse keys and sign URLs
            expiry_seconds: Validity window of generated URLs (capped at 8 hours)
            safety_margin_seconds: Entries this close to expiry are regenerated
            clock: Wall clock in seconds (tests)
        """
        self.storage = storage
        self.expiry_seconds = min(expiry_seconds, MAX_PRESIGN_EXPIRY_SECONDS)
        self.safety_margin_seconds = safety_margin_seconds
        self._clock = clock

        self._cache: dict[str, PresignedUrlCacheEntry] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._locks_guard = threading.Lock()

        self.sign_count = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _lock_for(self, key: str) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._key_locks[key] = lock
            return lock

    def _drop_lock(self, key: str, lock: asyncio.Lock) -> None:
        # Waiters still hold their reference; later callers see the cache entry
        with self._locks_guard:
            if self._key_locks.get(key) is lock:
                del self._key_locks[key]

    def _is_fresh(self, entry: PresignedUrlCacheEntry) -> bool:
        return entry.expires_at_epoch_ms - self._now_ms() > self.safety_margin_seconds * 1000

    def get_cached(self, url: str) -> Optional[PresignedUrlCacheEntry]:
        """Cache entry for the object behind ``url``, if any."""
        try:
            key = self.storage.key_from_url(url)
        except ValueError:
            return None
        return self._cache.get(key)

    def is_expired(self, url: str) -> bool:
        """True unless a cached entry for ``url`` is still outside the safety margin."""
        entry = self.get_cached(url)
        return entry is None or not self._is_fresh(entry)

    def invalidate(self, url: str) -> None:
        entry = self.get_cached(url)
        if entry is not None:
            self._cache.pop(entry.object_key, None)
            logger.debug(f"Invalidated presigned URL for {entry.object_key}")

    def clear(self) -> None:
        self._cache.clear()

    async def resolve(self, stored_url: str) -> str:
        """Return a signed URL for ``stored_url``, signing only when needed.

        If signing fails the stored URL is returned unchanged so a public
        bucket keeps working.

        Raises:
            ValueError: If no object key can be parsed from the URL
        """
        key = self.storage.key_from_url(stored_url)

        entry = self._cache.get(key)
        if entry is not None and self._is_fresh(entry):
            logger.debug(f"Presign cache hit for {key}")
            return entry.signed_url

        lock = self._lock_for(key)
        try:
            async with lock:
                # Another resolver may have signed while we waited
                entry = self._cache.get(key)
                if entry is not None and self._is_fresh(entry):
                    logger.debug(f"Presign cache hit for {key} after wait")
                    return entry.signed_url

                logger.debug(f"Presign cache miss for {key}")
                try:
                    signed_url = self.storage.presign_get(key, self.expiry_seconds)
                except StorageError as e:
                    logger.warning(f"Presigning failed for {key}, serving stored URL: {e}")
                    return stored_url

                self.sign_count += 1
                self._cache[key] = PresignedUrlCacheEntry(
                    object_key=key,
                    signed_url=signed_url,
                    expires_at_epoch_ms=self._now_ms() + self.expiry_seconds * 1000,
                )
                return signed_url
        finally:
            self._drop_lock(key, lock)

    async def refresh_if_needed(self, url: str, force: bool = False) -> str:
        """Regenerate the signed URL if forced (after a 403) or near expiry.

        ``url`` may be either the stored URL or a previously signed one.
        """
        if force or self.is_expired(url):
            self.invalidate(url)
            logger.info(f"Refreshing presigned URL (forced={force})")
        return await self.resolve(url)

    async def sign_playlist(self, playlist_url: str, text: str) -> str:
        """Rewrite an HLS playlist so a private bucket can serve it.

        Segment URIs are resolved against ``playlist_url`` and replaced by
        signed URLs. Child playlist URIs stay relative so the player fetches
        them back through the same rewriting route.

        Raises:
            ValueError: If a segment URI resolves outside the bucket
        """
        lines = []
        for line in text.splitlines():
            uri = line.strip()
            if uri and not uri.startswith("#") and not uri.endswith(".m3u8"):
                line = await self.resolve(urljoin(playlist_url, uri))
            lines.append(line)
        rewritten = "\n".join(lines)
        return rewritten + "\n" if text.endswith("\n") else rewritten
