"""Tests for scaling arithmetic."""

from datetime import timedelta

import pytest

from zae_autoscaler.models import Dimension, Direction, ResolvedPolicy, ScalingPolicy
from zae_autoscaler.policy import apply_scaling, clamp, scale_down, scale_up


def _policy(**overrides) -> ResolvedPolicy:
    values = {
        "min_capacity": 5,
        "max_capacity": 100,
        "increase": 10,
        "threshold": 0.7,
        "up_window": timedelta(minutes=5),
        "down_window": timedelta(minutes=30),
        "is_disabled": False,
    }
    values.update(overrides)
    return ResolvedPolicy(**values)


class TestClamp:
    """Tests for clamp()."""

    def test_within_bounds(self) -> None:
        assert clamp(5, 100, 42) == 42

    def test_below_min(self) -> None:
        assert clamp(5, 100, 1) == 5

    def test_above_max(self) -> None:
        assert clamp(5, 100, 500) == 100


class TestScaleUp:
    """Tests for scale_up()."""

    def test_orders_scenario(self) -> None:
        """consumed 40 >= 50 * 0.7 -> max(50 + 10, 40 + 10) = 60."""
        assert scale_up(40, 50, _policy()) == 60

    def test_demand_dominates_step(self) -> None:
        """When demand far exceeds capacity, target is demand + increase."""
        assert scale_up(80, 50, _policy()) == 90

    @pytest.mark.parametrize("consumed", [0, 10, 34.9])
    def test_below_threshold_keeps_capacity(self, consumed: float) -> None:
        assert scale_up(consumed, 50, _policy()) == 50

    def test_below_threshold_still_clamped(self) -> None:
        """Capacity outside bounds is pulled back in even without activation."""
        assert scale_up(0, 2, _policy()) == 5
        assert scale_up(0, 150, _policy(max_capacity=100, threshold=1.0)) == 100

    def test_at_threshold_activates(self) -> None:
        assert scale_up(35, 50, _policy()) == 60

    @pytest.mark.parametrize(
        ("consumed", "provisioned"),
        [(35, 50), (50, 50), (99, 90), (1000, 95), (3.5, 5)],
    )
    def test_result_within_bounds_and_grows(self, consumed: float, provisioned: int) -> None:
        policy = _policy()
        raw = max(provisioned + policy.increase, consumed + policy.increase)
        assert raw >= provisioned + policy.increase
        result = scale_up(consumed, provisioned, policy)
        assert policy.min_capacity <= result <= policy.max_capacity
        assert result == clamp(policy.min_capacity, policy.max_capacity, raw)

    def test_capped_at_max(self) -> None:
        assert scale_up(500, 95, _policy()) == 100

    def test_disabled_returns_provisioned(self) -> None:
        """Disabled policies return capacity unchanged, even out of bounds."""
        policy = _policy(is_disabled=True)
        assert scale_up(1000, 50, policy) == 50
        assert scale_up(0, 500, policy) == 500


class TestScaleDown:
    """Tests for scale_down()."""

    def test_orders_scenario_floors_to_min(self) -> None:
        """(10 / 0.7) - 10 ~= 4.3 -> clamped to min 5."""
        assert scale_down(10, 60, _policy()) == 5

    def test_targets_demand(self) -> None:
        """(35 / 0.7) - 10 = 40, regardless of current capacity."""
        assert scale_down(35, 60, _policy()) == pytest.approx(40)
        assert scale_down(35, 90, _policy()) == pytest.approx(40)

    def test_may_exceed_current_capacity(self) -> None:
        """The down formula ignores provisioned capacity except for clamping."""
        assert scale_down(70, 50, _policy()) == pytest.approx(90)

    @pytest.mark.parametrize("consumed", [0, 1, 10, 50, 69.9, 1000, 1e6])
    def test_result_within_bounds(self, consumed: float) -> None:
        policy = _policy()
        result = scale_down(consumed, 50, policy)
        assert policy.min_capacity <= result <= policy.max_capacity

    def test_disabled_returns_provisioned(self) -> None:
        policy = _policy(is_disabled=True)
        assert scale_down(0, 50, policy) == 50
        assert scale_down(1000, 50, policy) == 50


class TestApplyScaling:
    """Tests for apply_scaling()."""

    def _scaling_policy(self) -> ScalingPolicy:
        return ScalingPolicy.from_dict(
            {
                "tableName": "Orders",
                "min": 5,
                "max": 100,
                "increase": 10,
                "threshold": 0.7,
                "indexes": {"byCustomer": {"max": 20}},
            }
        )

    def test_up_uses_table_policy(self) -> None:
        result = apply_scaling(Direction.UP, Dimension.READ, self._scaling_policy(), None, 50, 40)
        assert result == 60

    def test_up_uses_index_override(self) -> None:
        policy = self._scaling_policy()
        result = apply_scaling(Direction.UP, Dimension.WRITE, policy, "byCustomer", 15, 14)
        assert result == 20

    def test_down_truncates_to_int(self) -> None:
        """(30 / 0.7) - 10 = 32.857... -> 32."""
        result = apply_scaling(Direction.DOWN, Dimension.READ, self._scaling_policy(), None, 60, 30)
        assert result == 32
        assert isinstance(result, int)

    @pytest.mark.parametrize("direction", [Direction.UP, Direction.DOWN])
    @pytest.mark.parametrize("consumed", [0, 25, 49.5, 500])
    def test_disabled_keeps_capacity(self, direction: Direction, consumed: float) -> None:
        policy = ScalingPolicy.from_dict({"tableName": "Orders", "isDisabled": True})
        assert apply_scaling(direction, Dimension.READ, policy, None, 37, consumed) == 37
