"""
Webhook redelivery dedup tests.
"""
import pytest
from unittest.mock import AsyncMock, patch
from src.utils.dedup import make_dedup_key, is_duplicate_delivery, release_delivery, DEDUP_WINDOW_SECONDS


class TestDedupKey:
    def test_same_input_same_key(self):
        """Same event fields should produce same key."""
        key1 = make_dedup_key("activity", 12345, "create", 1700000000)
        key2 = make_dedup_key("activity", 12345, "create", 1700000000)
        assert key1 == key2

    def test_different_object_different_key(self):
        key1 = make_dedup_key("activity", 12345, "create", 1700000000)
        key2 = make_dedup_key("activity", 12346, "create", 1700000000)
        assert key1 != key2

    def test_different_aspect_different_key(self):
        """A create and a delete of the same activity are distinct events."""
        key1 = make_dedup_key("activity", 12345, "create", 1700000000)
        key2 = make_dedup_key("activity", 12345, "delete", 1700000000)
        assert key1 != key2

    def test_different_event_time_different_key(self):
        key1 = make_dedup_key("activity", 12345, "create", 1700000000)
        key2 = make_dedup_key("activity", 12345, "create", 1700000001)
        assert key1 != key2

    def test_key_format(self):
        key = make_dedup_key("activity", 12345, "create", 1700000000)
        assert key.startswith("trailtune:webhook_dedup:")
        assert len(key.rsplit(":", 1)[1]) == 16


class TestIsDuplicateDelivery:
    """Test the async is_duplicate_delivery function with mocked Redis."""

    async def test_new_event_returns_false(self, mock_redis):
        """New event (SET NX succeeds) should return False."""
        mock_redis.set = AsyncMock(return_value=True)
        result = await is_duplicate_delivery("activity", 12345, "create", 1700000000)
        assert result is False

    async def test_redelivery_returns_true(self, mock_redis):
        """Redelivery (SET NX returns None) should return True."""
        mock_redis.set = AsyncMock(return_value=None)
        result = await is_duplicate_delivery("activity", 12345, "create", 1700000000)
        assert result is True

    async def test_sets_key_with_window(self, mock_redis):
        await is_duplicate_delivery("activity", 12345, "create", 1700000000)
        key = make_dedup_key("activity", 12345, "create", 1700000000)
        mock_redis.set.assert_awaited_once_with(key, "1", nx=True, ex=DEDUP_WINDOW_SECONDS)

    async def test_redis_failure_returns_false(self):
        """Redis failure should fail-open (assume not duplicate)."""
        with patch("src.utils.dedup.get_redis") as mock_get_redis:
            mock_get_redis.side_effect = Exception("Redis connection refused")
            result = await is_duplicate_delivery("activity", 12345, "create", 1700000000)
            assert result is False


class TestReleaseDelivery:
    async def test_deletes_key(self, mock_redis):
        await release_delivery("activity", 12345, "create", 1700000000)
        key = make_dedup_key("activity", 12345, "create", 1700000000)
        mock_redis.delete.assert_awaited_once_with(key)

    async def test_redis_failure_is_swallowed(self):
        with patch("src.utils.dedup.get_redis") as mock_get_redis:
            mock_get_redis.side_effect = Exception("Redis connection refused")
            await release_delivery("activity", 12345, "create", 1700000000)
