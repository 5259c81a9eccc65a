# app/usage/service/usage_gate.py
"""
Daily message quotas kept as Redis counters.

Counters are keyed by tier, user and UTC date, so a new day starts from zero
without any reset job. Models outside ``FREE_MODEL_IDS`` are "pro" models:
they need a signed-in user and have a separate, smaller quota.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

from redis.exceptions import RedisError

from app.chat.exceptions import LimitExceededError
from app.chat.service.service import IUsageGate
from app.core.config import Settings
from app.core.logger import get_logger
from pkg.redis.client import RedisClient

logger = get_logger(__name__)

_COUNTER_TTL = timedelta(days=2)

LOGIN_REQUIRED_MESSAGE = "You must log in to use this model."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageGate(IUsageGate):

    def __init__(self, redis_client: RedisClient, settings: Settings,
                 now: Callable[[], datetime] = _utc_now):
        self.redis = redis_client
        self.settings = settings
        self._now = now

    def is_pro_model(self, model: str) -> bool:
        return model not in self.settings.FREE_MODEL_IDS

    def _key(self, tier: str, user_id: str) -> str:
        return f"usage:{tier}:{user_id}:{self._now().strftime('%Y-%m-%d')}"

    def _tier_and_limit(self, model: str, is_authenticated: bool) -> tuple[str, int]:
        if self.is_pro_model(model):
            return "pro", self.settings.DAILY_LIMIT_PRO_MODELS
        if is_authenticated:
            return "daily", self.settings.AUTH_DAILY_MESSAGE_LIMIT
        return "daily", self.settings.NON_AUTH_DAILY_MESSAGE_LIMIT

    async def _read_count(self, key: str) -> int:
        value = await self.redis.async_get_value(key)
        if value is None:
            return 0
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Usage counter {key} holds a non-integer value {value!r}; treating as 0")
            return 0

    async def check(self, user_id: str, model: str, is_authenticated: bool) -> None:
        if self.is_pro_model(model) and not is_authenticated:
            raise LimitExceededError(LOGIN_REQUIRED_MESSAGE)

        tier, limit = self._tier_and_limit(model, is_authenticated)
        key = self._key(tier, user_id)
        try:
            count = await self._read_count(key)
        except RedisError as e:
            logger.error(f"Usage check for {user_id} could not read {key}, admitting request: {e}")
            return

        if count >= limit:
            logger.info(f"User {user_id} reached the {tier} limit of {limit} messages")
            if tier == "pro":
                raise LimitExceededError("Daily limit reached for this model. Please try again tomorrow.")
            raise LimitExceededError("Daily message limit reached. Please try again tomorrow.")

    async def increment(self, user_id: str, model: str, is_authenticated: bool) -> None:
        """Read-then-write; concurrent requests may undercount."""
        tier, _ = self._tier_and_limit(model, is_authenticated)
        key = self._key(tier, user_id)
        count = await self._read_count(key)
        await self.redis.async_set_value(key, count + 1, expiry=_COUNTER_TTL)
