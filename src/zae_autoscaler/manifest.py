"""YAML manifest of scaling policies.

A manifest is a static PolicyStore: useful for local runs and for seeding
the config table. Format::

    policies:
      - tableName: Orders
        min: 5
        max: 100
        increase: 10
        threshold: 0.7
        upTimeSpan: 5 minutes
        downTimeSpan: 30 minutes
        indexes:
          byCustomer:
            max: 50
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .exceptions import ConfigError
from .models import LoadedPolicies, PolicyDefaults, ScalingPolicy


@dataclass(frozen=True)
class PolicyManifest:
    """Parsed policy manifest. Invalid entries are kept as rejections."""

    policies: tuple[ScalingPolicy, ...] = ()
    rejected: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(
        cls,
        d: dict[str, Any],
        defaults: PolicyDefaults | None = None,
    ) -> PolicyManifest:
        if not isinstance(d, dict):
            raise ConfigError("Policy manifest must be a mapping")
        raw_policies = d.get("policies") or []
        if not isinstance(raw_policies, list):
            raise ConfigError("'policies' must be a list", field="policies")

        policies: list[ScalingPolicy] = []
        rejected: list[str] = []
        seen: set[str] = set()
        for entry in raw_policies:
            try:
                policy = ScalingPolicy.from_dict(entry, defaults)
            except ConfigError as e:
                rejected.append(str(e))
                continue
            if policy.table_name in seen:
                rejected.append(
                    str(ConfigError("Duplicate policy", table_name=policy.table_name))
                )
                continue
            seen.add(policy.table_name)
            policies.append(policy)

        return cls(policies=tuple(policies), rejected=tuple(rejected))

    @classmethod
    def from_yaml(
        cls,
        yaml_str: str,
        defaults: PolicyDefaults | None = None,
    ) -> PolicyManifest:
        import yaml

        data = yaml.safe_load(yaml_str)
        return cls.from_dict(data or {}, defaults)

    def to_dict(self) -> dict[str, Any]:
        return {"policies": [policy.to_dict() for policy in self.policies]}

    async def load_all(self) -> LoadedPolicies:
        """PolicyStore interface."""
        return LoadedPolicies(policies=list(self.policies), rejected=list(self.rejected))
