"""Tests for soundoff.cache.redis."""

from unittest.mock import AsyncMock, MagicMock, patch


def _mock_settings():
    s = MagicMock()
    s.redis_url = "redis://localhost:6379/0"
    return s


def test_get_redis_singleton():
    import soundoff.cache.redis as redis_mod

    old_client = redis_mod._client
    redis_mod._client = None

    mock_client = MagicMock()

    with (
        patch("soundoff.cache.redis.get_settings", return_value=_mock_settings()),
        patch("soundoff.cache.redis.aioredis.from_url", return_value=mock_client) as from_url,
    ):
        c1 = redis_mod.get_redis()
        c2 = redis_mod.get_redis()

    assert c1 is mock_client
    assert c2 is mock_client
    from_url.assert_called_once_with(
        "redis://localhost:6379/0", encoding="utf-8", decode_responses=True
    )

    redis_mod._client = old_client


async def test_close_redis_resets_client():
    import soundoff.cache.redis as redis_mod

    old_client = redis_mod._client
    mock_client = AsyncMock()
    redis_mod._client = mock_client

    await redis_mod.close_redis()

    mock_client.aclose.assert_awaited_once()
    assert redis_mod._client is None

    redis_mod._client = old_client
