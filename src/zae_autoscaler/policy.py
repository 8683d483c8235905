"""Capacity arithmetic for scaling decisions.

All functions here are pure: they take a resolved policy and the observed
consumption and return the new provisioned capacity. Truncation to whole
capacity units is left to the caller.
"""

import math

from .models import Dimension, Direction, ResolvedPolicy, ScalingPolicy


def clamp(lower: float, upper: float, value: float) -> float:
    """Clamp ``value`` into ``[lower, upper]``."""
    return min(upper, max(lower, value))


def scale_up(consumed: float, provisioned: float, policy: ResolvedPolicy) -> float:
    """
    Target capacity for a scale up pass.

    Below the activation threshold (``consumed < provisioned * threshold``)
    capacity stays where it is. Above it, capacity grows by at least one
    increment and to at least one increment above current demand.

    Args:
        consumed: Consumed units per second
        provisioned: Currently provisioned units
        policy: Resolved policy for the resource

    Returns:
        New provisioned units, clamped to the policy bounds
    """
    if policy.is_disabled:
        return provisioned

    if consumed < provisioned * policy.threshold:
        result = provisioned
    else:
        result = max(provisioned + policy.increase, consumed + policy.increase)

    return clamp(policy.min_capacity, policy.max_capacity, result)


def scale_down(consumed: float, provisioned: float, policy: ResolvedPolicy) -> float:
    """
    Target capacity for a scale down pass.

    The target is the capacity at which current demand sits exactly at the
    threshold fraction, minus one increment. The previous capacity only
    matters for disabled policies.

    Args:
        consumed: Consumed units per second
        provisioned: Currently provisioned units
        policy: Resolved policy for the resource

    Returns:
        New provisioned units, clamped to the policy bounds
    """
    if policy.is_disabled:
        return provisioned

    result = (consumed / policy.threshold) - policy.increase
    return clamp(policy.min_capacity, policy.max_capacity, result)


def apply_scaling(
    direction: Direction,
    dimension: Dimension,
    policy: ScalingPolicy,
    index_name: str | None,
    current_provisioned: int,
    consumed_per_second: float,
) -> int:
    """
    New provisioned capacity for one resource dimension, in whole units.

    ``dimension`` does not change the arithmetic; read and write capacity
    share the resource's resolved policy.
    """
    resolved = policy.resolve_for(index_name)
    if direction == Direction.UP:
        target = scale_up(consumed_per_second, current_provisioned, resolved)
    else:
        target = scale_down(consumed_per_second, current_provisioned, resolved)
    return math.floor(target)
