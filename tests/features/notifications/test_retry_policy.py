import pytest

from app.features.notifications.services.retry_policy import RetryPolicy, notification_retry_policy


def test_default_schedule_doubles_from_three_seconds():
    policy = RetryPolicy()

    assert [policy.delay_ms(n) for n in range(4)] == [3000, 6000, 12000, 24000]
    assert policy.countdown(0) == 3.0
    assert policy.max_retries == 4


def test_delay_is_capped():
    policy = RetryPolicy(max_attempts=20, initial_delay_ms=3000, max_delay_ms=10_000)

    assert policy.delay_ms(10) == 10_000


def test_exhaustion_counts_attempts():
    policy = RetryPolicy(max_attempts=5)

    assert not policy.is_exhausted(4)
    assert policy.is_exhausted(5)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": 0},
        {"initial_delay_ms": -1},
        {"initial_delay_ms": 5000, "max_delay_ms": 1000},
    ],
)
def test_invalid_policies_are_rejected(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_policy_from_settings():
    policy = notification_retry_policy()

    assert policy.max_attempts == 5
    assert policy.initial_delay_ms == 3000
