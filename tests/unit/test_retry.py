"""Backoff computation tests."""

import pytest

from hrflow.config import HrflowConfig
from hrflow.utils.retry import RetryPolicy, compute_backoff


def test_backoff_doubles_until_cap():
    assert compute_backoff(0, base=15, cap=300) == 15
    assert compute_backoff(1, base=15, cap=300) == 30
    assert compute_backoff(2, base=15, cap=300) == 60
    assert compute_backoff(10, base=15, cap=300) == 300
    assert compute_backoff(-1, base=15, cap=300) == 15


def test_backoff_jitter_stays_in_range():
    for _ in range(20):
        delay = compute_backoff(1, base=1, cap=10, jitter=0.5)
        assert 2 <= delay <= 2.5


def test_policy_delay_and_validation():
    policy = RetryPolicy(base_delay=5, max_delay=60, timeout=2)
    assert [policy.delay_for(n) for n in range(5)] == [5, 10, 20, 40, 60]

    with pytest.raises(ValueError):
        RetryPolicy(max_retries=0)
    with pytest.raises(ValueError):
        RetryPolicy(timeout=0)


def test_timeout_must_fit_inside_first_backoff():
    with pytest.raises(ValueError, match="shorter than the first backoff"):
        RetryPolicy(base_delay=5, timeout=5)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=30, max_delay=10, timeout=12)
    # immediate retries have no interval to respect
    assert RetryPolicy(base_delay=0, max_delay=0, timeout=30).timeout == 30


def test_default_policies_time_out_before_the_first_retry():
    for integration_type, policy in HrflowConfig().retry.items():
        assert policy.timeout < policy.delay_for(0), integration_type
