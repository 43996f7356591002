"""Tests for the presigned-access resolver and its cache."""

import asyncio
from unittest.mock import Mock

import pytest

from services.errors import StorageAccessDeniedError
from services.presigned_url import PresignedUrlResolver
from services.storage_client import ObjectStorageClient

HOUR = 3600


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    storage = ObjectStorageClient(
        endpoint_url="https://s3.test",
        access_key_id="key",
        secret_access_key="secret",
        bucket_name="clipflow-videos",
        client=Mock(),
    )
    counter = {"n": 0}

    def presign(key, expires_in):
        counter["n"] += 1
        return f"https://s3.test/clipflow-videos/{key}?sig={counter['n']}&expires={expires_in}"

    storage.presign_get = Mock(side_effect=presign)
    return storage


@pytest.fixture
def resolver(storage, clock):
    return PresignedUrlResolver(storage, expiry_seconds=8 * HOUR, safety_margin_seconds=1800, clock=clock)


STORED_URL = "https://s3.test/clipflow-videos/user-1/1700000000000-ab12cd34-hls/master.m3u8"


class TestPresignedUrlResolver:
    """Tests for resolve / is_expired / refresh_if_needed."""

    @pytest.mark.asyncio
    async def test_cached_within_validity(self, resolver, storage, clock):
        first = await resolver.resolve(STORED_URL)
        clock.now += 7 * HOUR
        second = await resolver.resolve(STORED_URL)

        assert first == second
        assert storage.presign_get.call_count == 1
        storage.presign_get.assert_called_with("user-1/1700000000000-ab12cd34-hls/master.m3u8", 8 * HOUR)

    @pytest.mark.asyncio
    async def test_regenerates_inside_safety_margin(self, resolver, storage, clock):
        first = await resolver.resolve(STORED_URL)
        clock.now += 7.6 * HOUR
        second = await resolver.resolve(STORED_URL)

        assert first != second
        assert storage.presign_get.call_count == 2

    @pytest.mark.asyncio
    async def test_regenerates_after_expiry(self, resolver, storage, clock):
        first = await resolver.resolve(STORED_URL)
        clock.now += 9 * HOUR
        assert resolver.is_expired(STORED_URL)
        second = await resolver.resolve(STORED_URL)

        assert first != second

    @pytest.mark.asyncio
    async def test_signed_url_maps_to_same_entry(self, resolver, storage):
        signed = await resolver.resolve(STORED_URL)
        assert await resolver.resolve(signed) == signed
        assert storage.presign_get.call_count == 1

    @pytest.mark.asyncio
    async def test_is_expired(self, resolver, clock):
        assert resolver.is_expired(STORED_URL)
        await resolver.resolve(STORED_URL)
        assert not resolver.is_expired(STORED_URL)
        clock.now += 7.5 * HOUR + 1
        assert resolver.is_expired(STORED_URL)

    @pytest.mark.asyncio
    async def test_refresh_if_needed_keeps_fresh_entry(self, resolver, storage):
        signed = await resolver.resolve(STORED_URL)
        assert await resolver.refresh_if_needed(signed) == signed
        assert storage.presign_get.call_count == 1

    @pytest.mark.asyncio
    async def test_forced_refresh_after_403(self, resolver, storage):
        signed = await resolver.resolve(STORED_URL)
        refreshed = await resolver.refresh_if_needed(signed, force=True)

        assert refreshed != signed
        assert storage.presign_get.call_count == 2

    @pytest.mark.asyncio
    async def test_presign_failure_returns_stored_url(self, resolver, storage):
        storage.presign_get.side_effect = StorageAccessDeniedError("denied")
        assert await resolver.resolve(STORED_URL) == STORED_URL
        assert resolver.is_expired(STORED_URL)

    @pytest.mark.asyncio
    async def test_url_without_key_rejected(self, resolver):
        with pytest.raises(ValueError):
            await resolver.resolve("https://s3.test/clipflow-videos/")

    @pytest.mark.asyncio
    async def test_concurrent_resolves_sign_once(self, resolver, storage):
        results = await asyncio.gather(*(resolver.resolve(STORED_URL) for _ in range(10)))
        assert len(set(results)) == 1
        assert storage.presign_get.call_count == 1

    @pytest.mark.asyncio
    async def test_key_locks_released_after_signing(self, resolver, storage):
        for n in range(5):
            await resolver.resolve(f"https://s3.test/clipflow-videos/user-1/clip-{n}.mp4")
        storage.presign_get.side_effect = StorageAccessDeniedError("denied")
        await resolver.resolve("https://s3.test/clipflow-videos/user-1/denied.mp4")

        assert resolver._key_locks == {}
        assert len(resolver._cache) == 5

    @pytest.mark.asyncio
    async def test_foreign_host_rejected_without_signing(self, resolver, storage):
        with pytest.raises(ValueError):
            await resolver.resolve("https://anything.example/clipflow-videos/other-user/backup.mp4")
        storage.presign_get.assert_not_called()

    def test_expiry_capped_at_eight_hours(self, storage):
        resolver = PresignedUrlResolver(storage, expiry_seconds=7 * 24 * HOUR)
        assert resolver.expiry_seconds == 8 * HOUR
