from datetime import datetime, timedelta, timezone

import pytest

from app.chat.exceptions import LimitExceededError
from app.core.config import Settings
from app.usage.service.usage_gate import LOGIN_REQUIRED_MESSAGE, UsageGate

FREE_MODEL = "gpt-4o-mini"
PRO_MODEL = "gpt-4o"


class Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def limits() -> Settings:
    return Settings(
        NON_AUTH_DAILY_MESSAGE_LIMIT=2,
        AUTH_DAILY_MESSAGE_LIMIT=3,
        DAILY_LIMIT_PRO_MODELS=1,
        FREE_MODEL_IDS=[FREE_MODEL],
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def gate(fake_redis, limits, clock) -> UsageGate:
    return UsageGate(fake_redis, limits, now=clock)


@pytest.mark.asyncio
async def test_guest_is_blocked_after_guest_limit(gate):
    for _ in range(2):
        await gate.check("guest-1", FREE_MODEL, is_authenticated=False)
        await gate.increment("guest-1", FREE_MODEL, is_authenticated=False)

    with pytest.raises(LimitExceededError):
        await gate.check("guest-1", FREE_MODEL, is_authenticated=False)


@pytest.mark.asyncio
async def test_signed_in_user_gets_the_larger_limit(gate):
    for _ in range(2):
        await gate.increment("u-1", FREE_MODEL, is_authenticated=True)

    await gate.check("u-1", FREE_MODEL, is_authenticated=True)


@pytest.mark.asyncio
async def test_pro_model_requires_login(gate, fake_redis):
    with pytest.raises(LimitExceededError) as exc_info:
        await gate.check("guest-1", PRO_MODEL, is_authenticated=False)

    assert exc_info.value.message == LOGIN_REQUIRED_MESSAGE
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_pro_quota_is_counted_separately(gate):
    await gate.increment("u-1", PRO_MODEL, is_authenticated=True)

    with pytest.raises(LimitExceededError):
        await gate.check("u-1", PRO_MODEL, is_authenticated=True)
    await gate.check("u-1", FREE_MODEL, is_authenticated=True)


@pytest.mark.asyncio
async def test_counters_reset_on_utc_day_rollover(gate, clock):
    await gate.increment("u-1", PRO_MODEL, is_authenticated=True)
    with pytest.raises(LimitExceededError):
        await gate.check("u-1", PRO_MODEL, is_authenticated=True)

    clock.now += timedelta(minutes=2)

    await gate.check("u-1", PRO_MODEL, is_authenticated=True)


@pytest.mark.asyncio
async def test_counter_keys_expire(gate, fake_redis):
    await gate.increment("u-1", FREE_MODEL, is_authenticated=True)

    [key] = fake_redis.store
    assert key == "usage:daily:u-1:2026-03-01"
    assert fake_redis.store[key] == "1"
    assert fake_redis.expiries[key] == timedelta(days=2)


@pytest.mark.asyncio
async def test_redis_outage_admits_requests(gate, fake_redis):
    fake_redis.fail_reads = True

    await gate.check("u-1", FREE_MODEL, is_authenticated=True)


@pytest.mark.asyncio
async def test_redis_outage_does_not_bypass_login_requirement(gate, fake_redis):
    fake_redis.fail_reads = True

    with pytest.raises(LimitExceededError):
        await gate.check("guest-1", PRO_MODEL, is_authenticated=False)
