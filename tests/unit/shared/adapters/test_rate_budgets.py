import asyncio
import time

import pytest

from cloudtables.shared.adapters.rate_limiter import (
    RateLimiter,
    get_rate_budget,
    reset_rate_budgets,
    set_rate_budget,
    wait_for_rate_budget,
)
from cloudtables.shared.core.async_utils import CancelToken
from cloudtables.shared.core.config import get_settings
from cloudtables.shared.core.exceptions import ScanCancelledError


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        RateLimiter(0)


def test_budget_lookup_prefers_action_then_service_then_default(monkeypatch):
    monkeypatch.setenv("RATE_LIMITS", '{"ec2:DescribeInstances": 1, "ec2": 5, "default": 50}')
    get_settings.cache_clear()

    assert get_rate_budget("ec2", "DescribeInstances").rate == 1
    assert get_rate_budget("EC2", "DescribeVpcs").rate == 5
    assert get_rate_budget("sqs", "ListQueues").rate == 50


def test_budgets_are_shared_per_pair():
    assert get_rate_budget("ec2", "DescribeInstances") is get_rate_budget("ec2", "DescribeInstances")
    assert get_rate_budget("ec2", "DescribeInstances") is not get_rate_budget("ec2", "DescribeVpcs")

    replaced = set_rate_budget("ec2", "DescribeInstances", 3)
    assert get_rate_budget("ec2", "DescribeInstances") is replaced

    reset_rate_budgets()
    assert get_rate_budget("ec2", "DescribeInstances") is not replaced


@pytest.mark.asyncio
async def test_calls_are_spaced_to_the_budget():
    set_rate_budget("widgets", "*", 2)

    started = time.monotonic()
    for _ in range(5):
        await wait_for_rate_budget("widgets")
    elapsed = time.monotonic() - started

    # two calls fit the initial burst, the other three wait 0.5s each
    assert elapsed >= 1.4


@pytest.mark.asyncio
async def test_concurrent_waiters_share_one_budget():
    set_rate_budget("widgets", "ListWidgets", 10)

    started = time.monotonic()
    await asyncio.gather(*(wait_for_rate_budget("widgets", "ListWidgets") for _ in range(15)))

    assert time.monotonic() - started >= 0.4


@pytest.mark.asyncio
async def test_cancel_interrupts_a_rate_wait():
    set_rate_budget("widgets", "*", 1)
    await wait_for_rate_budget("widgets")

    token = CancelToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel, "stream closed")
    started = time.monotonic()
    with pytest.raises(ScanCancelledError):
        await wait_for_rate_budget("widgets", cancel=token)
    assert time.monotonic() - started < 5
