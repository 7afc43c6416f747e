"""
Criteria Verification Cache

Caches one sub-batch's verifications in Redis, keyed by a hash of the page
HTML, the WCAG level and the criterion ids of the sub-batch. Identical content
checked against the same criteria gets the same answer without another model
call, whatever the batch size.
"""
import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError
from redis import Redis
from redis.exceptions import RedisError

from app.features.scan.models.scan import WcagLevel
from app.features.verification.schemas.verification import CriterionVerification
from app.platform.cache.redis import get_redis
from app.platform.config import settings
from app.platform.exceptions import TransientInfrastructureError
from app.platform.logger import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "a11y:criteria-verification"


class CacheError(TransientInfrastructureError):
    code = "CACHE_UNAVAILABLE"


class CacheEntry(BaseModel):
    verifications: List[CriterionVerification]
    tokens_used: int = 0
    model: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    saved_tokens: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class CriteriaVerificationCache:
    def __init__(self, client: Optional[Redis] = None, ttl_days: Optional[int] = None):
        self.client = client or get_redis()
        self.ttl = timedelta(days=settings.VERIFICATION_CACHE_TTL_DAYS if ttl_days is None else ttl_days)
        self.stats = CacheStats()

    @staticmethod
    def generate_key(html: str, level: WcagLevel, criterion_ids: Iterable[str]) -> str:
        content_hash = hashlib.sha256(html.encode("utf-8")).hexdigest()[:16]
        criteria_hash = hashlib.sha256(",".join(sorted(criterion_ids)).encode("utf-8")).hexdigest()[:16]
        return f"{KEY_PREFIX}:{content_hash}:{level.value}:{criteria_hash}"

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = self.client.get(key)
        except RedisError as e:
            raise CacheError("Verification cache lookup failed", cause=e) from e

        if raw is None:
            self.stats.misses += 1
            return None

        try:
            entry = CacheEntry.model_validate(json.loads(raw))
        except (ValueError, SchemaValidationError):
            # Unreadable entries are dropped and count as a miss
            logger.warning(f"Dropping unreadable cache entry {key}")
            self.invalidate(key)
            self.stats.misses += 1
            return None

        self.stats.hits += 1
        self.stats.saved_tokens += entry.tokens_used
        return entry

    def set(self, key: str, verifications: List[CriterionVerification], tokens_used: int, model: Optional[str]) -> None:
        entry = CacheEntry(verifications=verifications, tokens_used=tokens_used, model=model)
        try:
            self.client.setex(key, self.ttl, entry.model_dump_json())
        except RedisError as e:
            raise CacheError("Verification cache write failed", cause=e) from e

    def invalidate(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as e:
            raise CacheError("Verification cache delete failed", cause=e) from e
