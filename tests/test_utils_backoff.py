"""
Tests for exponential backoff calculation utilities.

Test Perspectives Table:
| Case ID | Input / Precondition | Perspective | Expected Result | Notes |
|---------|---------------------|-------------|-----------------|-------|
| TC-B-01 | attempt=0, default config | Normal | 0.1s delay | First retry |
| TC-B-02 | attempt=1, default config | Normal | 0.2s delay | Second retry |
| TC-B-03 | attempt=2, default config | Normal | 0.4s delay | Third retry |
| TC-B-04 | attempt=10, default config | Boundary | 0.5s (capped) | Max delay |
| TC-B-05 | attempt=-1 | Boundary | ValueError | Negative attempt |
| TC-B-06 | base_delay=0 | Boundary | ValueError | Invalid config |
| TC-B-07 | jitter_factor=0.1 | Normal | ±10% variation | Jitter applied |
| TC-T-01 | max_retries=3 | Normal | 0.7s total | Sum of delays |
| TC-T-02 | max_retries=0 | Boundary | 0.0s total | No retries |
"""

import random

import pytest

from tabharvest.utils.backoff import (
    BackoffConfig,
    calculate_backoff,
    calculate_total_delay,
)


class TestBackoffConfig:
    """Tests for BackoffConfig dataclass."""

    def test_default_values(self):
        """Defaults match the page agent polling schedule."""
        # Given: No arguments
        # When: Creating default config
        config = BackoffConfig()

        # Then: 100ms base, 500ms cap, doubling, no jitter
        assert config.base_delay == 0.1
        assert config.max_delay == 0.5
        assert config.exponential_base == 2.0
        assert config.jitter_factor == 0.0

    def test_invalid_base_delay_zero(self):
        # Given: Invalid base_delay
        # When/Then: ValueError is raised
        with pytest.raises(ValueError, match="base_delay must be positive"):
            BackoffConfig(base_delay=0)

    def test_invalid_max_below_base(self):
        with pytest.raises(ValueError, match="max_delay must be >= base_delay"):
            BackoffConfig(base_delay=1.0, max_delay=0.5)

    def test_invalid_exponential_base(self):
        with pytest.raises(ValueError, match="exponential_base must be > 1"):
            BackoffConfig(exponential_base=1.0)

    @pytest.mark.parametrize("jitter", [-0.1, 1.5])
    def test_invalid_jitter(self, jitter):
        with pytest.raises(ValueError, match="jitter_factor must be between 0 and 1"):
            BackoffConfig(jitter_factor=jitter)


class TestCalculateBackoff:
    """Tests for calculate_backoff()."""

    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(0, 0.1), (1, 0.2), (2, 0.4), (3, 0.5), (10, 0.5)],
    )
    def test_default_schedule(self, attempt, expected):
        """TC-B-01..04: 100ms, 200ms, 400ms, then capped at 500ms."""
        assert calculate_backoff(attempt) == pytest.approx(expected)

    def test_negative_attempt(self):
        """TC-B-05: Negative attempt is rejected."""
        with pytest.raises(ValueError, match="attempt must be non-negative"):
            calculate_backoff(-1)

    def test_custom_config(self):
        config = BackoffConfig(base_delay=1.0, max_delay=30.0)

        assert calculate_backoff(0, config) == pytest.approx(1.0)
        assert calculate_backoff(4, config) == pytest.approx(16.0)
        assert calculate_backoff(5, config) == pytest.approx(30.0)

    def test_jitter_within_range(self):
        """TC-B-07: Jitter stays within ±jitter_factor of the base delay."""
        # Given: 10% jitter and a seeded generator
        random.seed(42)
        config = BackoffConfig(base_delay=1.0, max_delay=60.0, jitter_factor=0.1)

        # When: Calculating many delays
        delays = [calculate_backoff(2, config) for _ in range(50)]

        # Then: All within 4.0 ± 0.4 and not all identical
        assert all(3.6 <= d <= 4.4 for d in delays)
        assert len(set(delays)) > 1

    def test_jitter_disabled(self):
        config = BackoffConfig(base_delay=1.0, max_delay=60.0, jitter_factor=0.5)

        assert calculate_backoff(1, config, add_jitter=False) == pytest.approx(2.0)


class TestCalculateTotalDelay:
    """Tests for calculate_total_delay()."""

    def test_three_retries(self):
        """TC-T-01: 0.1 + 0.2 + 0.4."""
        assert calculate_total_delay(3) == pytest.approx(0.7)

    def test_zero_retries(self):
        """TC-T-02: No retries, no delay."""
        assert calculate_total_delay(0) == 0.0

    def test_capped_schedule(self):
        # 0.1 + 0.2 + 0.4 + 0.5 + 0.5
        assert calculate_total_delay(5) == pytest.approx(1.7)

    def test_negative(self):
        with pytest.raises(ValueError, match="max_retries must be non-negative"):
            calculate_total_delay(-1)
