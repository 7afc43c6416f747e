import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.features.scan.models.scan import WcagLevel
from app.features.verification.schemas.verification import CriterionStatus, CriterionVerification
from app.features.verification.services.verification_cache import CacheError, CriteriaVerificationCache

VERIFICATIONS = [CriterionVerification(criterion_id="1.1.1", status=CriterionStatus.AI_VERIFIED_PASS, confidence=95)]


@pytest.fixture
def redis_client():
    return MagicMock()


@pytest.fixture
def cache(redis_client):
    return CriteriaVerificationCache(client=redis_client, ttl_days=7)


def test_key_depends_on_content_level_and_criteria():
    key = CriteriaVerificationCache.generate_key("<html></html>", WcagLevel.AA, ["1.1.1", "1.2.1"])

    assert key.startswith("a11y:criteria-verification:")
    assert ":AA:" in key
    assert key == CriteriaVerificationCache.generate_key("<html></html>", WcagLevel.AA, ["1.2.1", "1.1.1"])
    assert key != CriteriaVerificationCache.generate_key("<html> </html>", WcagLevel.AA, ["1.1.1", "1.2.1"])
    assert key != CriteriaVerificationCache.generate_key("<html></html>", WcagLevel.A, ["1.1.1", "1.2.1"])
    assert key != CriteriaVerificationCache.generate_key("<html></html>", WcagLevel.AA, ["1.1.1"])


def test_set_writes_with_ttl(cache, redis_client):
    cache.set("key", VERIFICATIONS, 120, "test-model")

    key, ttl, payload = redis_client.setex.call_args[0]
    assert key == "key"
    assert ttl == timedelta(days=7)
    assert json.loads(payload)["tokens_used"] == 120


def test_get_hit_tracks_saved_tokens(cache, redis_client):
    cache.set("key", VERIFICATIONS, 120, "test-model")
    redis_client.get.return_value = redis_client.setex.call_args[0][2]

    entry = cache.get("key")

    assert entry.verifications[0].criterion_id == "1.1.1"
    assert cache.stats.hits == 1
    assert cache.stats.saved_tokens == 120
    assert cache.stats.hit_rate == 1.0


def test_get_miss(cache, redis_client):
    redis_client.get.return_value = None

    assert cache.get("key") is None
    assert cache.stats.misses == 1
    assert cache.stats.hit_rate == 0.0


def test_unreadable_entry_is_dropped(cache, redis_client):
    redis_client.get.return_value = "{broken"

    assert cache.get("key") is None
    redis_client.delete.assert_called_once_with("key")
    assert cache.stats.misses == 1


def test_redis_failure_raises_cache_error(cache, redis_client):
    redis_client.get.side_effect = RedisConnectionError("connection refused")

    with pytest.raises(CacheError) as exc_info:
        cache.get("key")

    assert exc_info.value.retryable is True
