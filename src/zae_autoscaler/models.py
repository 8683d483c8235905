"""Core models for zae-autoscaler."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .exceptions import ConfigError

# Only resources in this state are evaluated
ACTIVE_STATUS = "ACTIVE"

# On-demand tables have no provisioned throughput to adjust
PAY_PER_REQUEST = "PAY_PER_REQUEST"

_TIME_SPAN_RE = re.compile(r"^\s*(\d+)\s*([a-zA-Z]+)\s*$")

_TIME_UNITS: dict[str, int] = {
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
}


def parse_time_span(value: Any, field_name: str = "window") -> timedelta:
    """
    Parse an analysis window into a timedelta.

    Accepts a timedelta, an integer number of seconds, or a string of the
    form "<amount> <unit>" (e.g. "5 minutes", "1 hour", "30 s").

    Raises:
        ConfigError: If the value cannot be parsed or is not positive
    """
    if isinstance(value, timedelta):
        span = value
    elif isinstance(value, bool):
        raise ConfigError(f"Invalid time span: {value!r}", field=field_name)
    elif isinstance(value, (int, float)):
        span = timedelta(seconds=value)
    elif isinstance(value, str):
        if value.strip().isdigit():
            span = timedelta(seconds=int(value))
        else:
            match = _TIME_SPAN_RE.match(value)
            if not match:
                raise ConfigError(f"Invalid time span: {value!r}", field=field_name)
            amount, unit = match.groups()
            seconds = _TIME_UNITS.get(unit.lower())
            if seconds is None:
                raise ConfigError(f"Unknown time unit {unit!r} in {value!r}", field=field_name)
            span = timedelta(seconds=int(amount) * seconds)
    else:
        raise ConfigError(f"Invalid time span: {value!r}", field=field_name)

    if span.total_seconds() <= 0:
        raise ConfigError(f"Time span must be positive: {value!r}", field=field_name)
    return span


def format_time_span(span: timedelta) -> str:
    """Format a timedelta as a persisted time span string."""
    return f"{int(span.total_seconds())} seconds"


class Direction(str, Enum):
    """Scaling direction of a pass."""

    UP = "up"
    DOWN = "down"


class Dimension(str, Enum):
    """Capacity dimension of a table or index."""

    READ = "read"
    WRITE = "write"

    @property
    def metric_name(self) -> str:
        """CloudWatch metric reporting consumption for this dimension."""
        return f"Consumed{self.value.capitalize()}CapacityUnits"

    @property
    def throughput_field(self) -> str:
        """ProvisionedThroughput field holding capacity for this dimension."""
        return f"{self.value.capitalize()}CapacityUnits"


class OutcomeStatus(str, Enum):
    """Result of one table pass."""

    NO_OP = "no-op"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PolicyDefaults:
    """
    Process-wide policy values used where a table leaves a field unset.

    Attributes:
        min_capacity: Lower bound for provisioned capacity
        max_capacity: Upper bound for provisioned capacity
        increase: Step added on scale up and reclaimed on scale down
        threshold: Consumed/provisioned fraction that activates scale up
        up_window: Analysis window for scale up passes
        down_window: Analysis window for scale down passes (and cool-down)
    """

    min_capacity: int = 1
    max_capacity: int = 1000
    increase: int = 10
    threshold: float = 0.8
    up_window: timedelta = timedelta(minutes=5)
    down_window: timedelta = timedelta(minutes=30)


@dataclass(frozen=True)
class ResolvedPolicy:
    """Fully populated policy for one table or index."""

    min_capacity: int
    max_capacity: int
    increase: int
    threshold: float
    up_window: timedelta
    down_window: timedelta
    is_disabled: bool = False

    def window(self, direction: Direction) -> timedelta:
        """Analysis window for the given direction."""
        return self.up_window if direction == Direction.UP else self.down_window


@dataclass(frozen=True)
class PolicyOverride:
    """
    Per-index policy values. Fields left as None inherit the table value.
    """

    min_capacity: int | None = None
    max_capacity: int | None = None
    increase: int | None = None
    threshold: float | None = None
    up_window: timedelta | None = None
    down_window: timedelta | None = None
    is_disabled: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], table_name: str | None = None) -> "PolicyOverride":
        """Deserialize from a persisted (camelCase) policy mapping."""
        if not isinstance(data, dict):
            raise ConfigError("Policy must be a mapping", table_name=table_name)
        return cls(
            min_capacity=_optional_int(data, "min", table_name),
            max_capacity=_optional_int(data, "max", table_name),
            increase=_optional_int(data, "increase", table_name),
            threshold=_optional_float(data, "threshold", table_name),
            up_window=_optional_window(data, "upTimeSpan", table_name),
            down_window=_optional_window(data, "downTimeSpan", table_name),
            is_disabled=_optional_bool(data, "isDisabled", table_name),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to persisted form, omitting inherited fields."""
        result: dict[str, Any] = {}
        if self.min_capacity is not None:
            result["min"] = self.min_capacity
        if self.max_capacity is not None:
            result["max"] = self.max_capacity
        if self.increase is not None:
            result["increase"] = self.increase
        if self.threshold is not None:
            result["threshold"] = self.threshold
        if self.up_window is not None:
            result["upTimeSpan"] = format_time_span(self.up_window)
        if self.down_window is not None:
            result["downTimeSpan"] = format_time_span(self.down_window)
        if self.is_disabled is not None:
            result["isDisabled"] = self.is_disabled
        return result

    def merge_onto(self, base: ResolvedPolicy) -> ResolvedPolicy:
        """Return ``base`` with every field this override sets replaced."""
        return ResolvedPolicy(
            min_capacity=_pick(self.min_capacity, base.min_capacity),
            max_capacity=_pick(self.max_capacity, base.max_capacity),
            increase=_pick(self.increase, base.increase),
            threshold=_pick(self.threshold, base.threshold),
            up_window=_pick(self.up_window, base.up_window),
            down_window=_pick(self.down_window, base.down_window),
            is_disabled=_pick(self.is_disabled, base.is_disabled),
        )


@dataclass(frozen=True)
class ScalingPolicy:
    """
    Auto-scaling configuration for one table and its indexes.

    Table-level values override ``defaults``; each entry of ``indexes``
    overrides the table-level values for that index.
    """

    table_name: str
    table: PolicyOverride = field(default_factory=PolicyOverride)
    indexes: dict[str, PolicyOverride] = field(default_factory=dict)
    defaults: PolicyDefaults = field(default_factory=PolicyDefaults)

    def __post_init__(self) -> None:
        if not self.table_name:
            raise ConfigError("Table name is required", field="tableName")
        # Reject configs that cannot resolve to a valid policy up front
        self.resolve_for(None)
        for index_name in self.indexes:
            self.resolve_for(index_name)

    def resolve_for(self, index_name: str | None = None) -> ResolvedPolicy:
        """
        Resolve the effective policy for the table or one of its indexes.

        Precedence (lowest to highest): process defaults, table values,
        index override. An index without an override gets the table policy.

        Raises:
            ConfigError: If the merged values violate policy bounds
        """
        resolved = self.table.merge_onto(
            ResolvedPolicy(
                min_capacity=self.defaults.min_capacity,
                max_capacity=self.defaults.max_capacity,
                increase=self.defaults.increase,
                threshold=self.defaults.threshold,
                up_window=self.defaults.up_window,
                down_window=self.defaults.down_window,
            )
        )
        if index_name:
            override = self.indexes.get(index_name)
            if override is not None:
                resolved = override.merge_onto(resolved)
        _validate_resolved(resolved, self.table_name, index_name)
        return resolved

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        defaults: PolicyDefaults | None = None,
    ) -> "ScalingPolicy":
        """
        Deserialize a persisted config item.

        ``indexes`` may be a mapping of index name to override, or a list
        of overrides carrying ``indexName``. List entries without
        ``indexName`` are ignored.

        Raises:
            ConfigError: If tableName is missing or any field is invalid
        """
        if not isinstance(data, dict):
            raise ConfigError("Policy must be a mapping")
        table_name = data.get("tableName")
        if not isinstance(table_name, str) or not table_name:
            raise ConfigError("Table name is required", field="tableName")

        raw_indexes = data.get("indexes") or {}
        indexes: dict[str, PolicyOverride] = {}
        if isinstance(raw_indexes, list):
            for entry in raw_indexes:
                if isinstance(entry, dict) and entry.get("indexName"):
                    indexes[entry["indexName"]] = PolicyOverride.from_dict(entry, table_name)
        elif isinstance(raw_indexes, dict):
            for index_name, entry in raw_indexes.items():
                indexes[index_name] = PolicyOverride.from_dict(entry, table_name)
        else:
            raise ConfigError("indexes must be a list or mapping", table_name=table_name)

        return cls(
            table_name=table_name,
            table=PolicyOverride.from_dict(data, table_name),
            indexes=indexes,
            defaults=defaults or PolicyDefaults(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to persisted form."""
        result: dict[str, Any] = {"tableName": self.table_name, **self.table.to_dict()}
        if self.indexes:
            result["indexes"] = {name: ov.to_dict() for name, ov in self.indexes.items()}
        return result


@dataclass
class LoadedPolicies:
    """Policies parsed from the config store, plus rejected entries."""

    policies: list[ScalingPolicy] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Table state and metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResourceState:
    """
    Snapshot of a table or index at evaluation time.

    ``index_name`` is None for the table itself.
    """

    table_name: str
    index_name: str | None
    status: str
    provisioned_read: int
    provisioned_write: int
    last_increase: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_STATUS

    @property
    def label(self) -> str:
        """Human-readable resource name for logs."""
        return f"{self.table_name}:{self.index_name}" if self.index_name else self.table_name

    def provisioned(self, dimension: Dimension) -> int:
        """Provisioned capacity for a dimension."""
        return self.provisioned_read if dimension == Dimension.READ else self.provisioned_write


@dataclass(frozen=True)
class TableState:
    """A table description: the table itself plus its global secondary indexes."""

    table: ResourceState
    indexes: dict[str, ResourceState] = field(default_factory=dict)
    billing_mode: str = "PROVISIONED"

    @property
    def table_name(self) -> str:
        return self.table.table_name

    @property
    def is_on_demand(self) -> bool:
        return self.billing_mode == PAY_PER_REQUEST

    def resource(self, index_name: str | None) -> ResourceState:
        """Return the table (index_name=None) or the named index."""
        if index_name is None:
            return self.table
        return self.indexes[index_name]

    def resources(self) -> list[ResourceState]:
        """Table first, then indexes in description order."""
        return [self.table, *self.indexes.values()]


@dataclass(frozen=True)
class MetricSample:
    """Summed consumption of one resource dimension over an analysis window."""

    table_name: str
    index_name: str | None
    dimension: Dimension
    sum_consumed_units: float
    window_seconds: float

    @property
    def consumed_per_second(self) -> float:
        return self.sum_consumed_units / self.window_seconds


# ---------------------------------------------------------------------------
# Decisions and patches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScalingDecision:
    """Target capacity for one resource dimension."""

    table_name: str
    index_name: str | None
    dimension: Dimension
    current_provisioned: int
    consumed_per_second: float
    new_provisioned: int

    @property
    def changed(self) -> bool:
        return self.new_provisioned != self.current_provisioned

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table_name,
            "index": self.index_name,
            "dimension": self.dimension.value,
            "provisioned": self.current_provisioned,
            "consumed": self.consumed_per_second,
            "scaled": self.new_provisioned,
            "changed": self.changed,
        }


@dataclass(frozen=True)
class ThroughputUpdate:
    """Final read and write capacity for one table or index."""

    read_capacity_units: int
    write_capacity_units: int

    def to_dict(self) -> dict[str, int]:
        return {
            "ReadCapacityUnits": self.read_capacity_units,
            "WriteCapacityUnits": self.write_capacity_units,
        }


@dataclass(frozen=True)
class UpdatePatch:
    """
    Minimal throughput update for one table.

    ``table`` is set only when a table dimension changed; ``indexes`` holds
    only indexes with at least one changed dimension. An empty patch means
    no update call is issued.
    """

    table_name: str
    table: ThroughputUpdate | None = None
    indexes: dict[str, ThroughputUpdate] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.table is None and not self.indexes

    def to_request(self) -> dict[str, Any]:
        """Render UpdateTable parameters."""
        request: dict[str, Any] = {"TableName": self.table_name}
        if self.table is not None:
            request["ProvisionedThroughput"] = self.table.to_dict()
        if self.indexes:
            request["GlobalSecondaryIndexUpdates"] = [
                {"Update": {"IndexName": name, "ProvisionedThroughput": update.to_dict()}}
                for name, update in self.indexes.items()
            ]
        return request


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class TableOutcome:
    """Result of one table pass in one direction."""

    table_name: str
    direction: Direction
    status: OutcomeStatus
    decisions: list[ScalingDecision] = field(default_factory=list)
    patch: UpdatePatch | None = None
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.status == OutcomeStatus.UPDATED

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "table": self.table_name,
            "direction": self.direction.value,
            "status": self.status.value,
            "changes": [d.to_dict() for d in self.decisions if d.changed],
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class BatchSummary:
    """Aggregate result of one batch run."""

    run_id: str
    direction: Direction
    outcomes: list[TableOutcome] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def changed(self) -> int:
        return sum(1 for o in self.outcomes if o.changed)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    def as_dict(self) -> dict[str, Any]:
        """Serialize for logging and JSON responses."""
        return {
            "run_id": self.run_id,
            "direction": self.direction.value,
            "attempted": self.attempted,
            "changed": self.changed,
            "failed": self.failed,
            "changed_tables": [o.table_name for o in self.outcomes if o.changed],
            "failed_tables": [o.table_name for o in self.outcomes if o.failed],
            "rejected": list(self.rejected),
            "error": self.error,
            "duration_ms": round(self.duration_ms, 2),
        }


# ---------------------------------------------------------------------------
# Field parsing helpers
# ---------------------------------------------------------------------------


def _pick(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value


def _optional_int(data: dict[str, Any], key: str, table_name: str | None) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer", field=key, table_name=table_name)
    if isinstance(value, float) and not value.is_integer():
        raise ConfigError(
            f"{key} must be an integer, got {value!r}", field=key, table_name=table_name
        )
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"{key} must be an integer, got {value!r}", field=key, table_name=table_name
        ) from None


def _optional_float(data: dict[str, Any], key: str, table_name: str | None) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number", field=key, table_name=table_name)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"{key} must be a number, got {value!r}", field=key, table_name=table_name
        ) from None


def _optional_bool(data: dict[str, Any], key: str, table_name: str | None) -> bool | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ConfigError(f"{key} must be a boolean", field=key, table_name=table_name)


def _optional_window(data: dict[str, Any], key: str, table_name: str | None) -> timedelta | None:
    value = data.get(key)
    if value is None:
        return None
    try:
        return parse_time_span(value, key)
    except ConfigError as e:
        raise ConfigError(
            f"Invalid time span {value!r}", field=key, table_name=table_name
        ) from e


def _validate_resolved(policy: ResolvedPolicy, table_name: str, index_name: str | None) -> None:
    """Check the invariants every resolved policy must satisfy."""
    where = f"{table_name}:{index_name}" if index_name else table_name
    if policy.min_capacity < 0:
        raise ConfigError("min must be >= 0", field="min", table_name=where)
    if policy.max_capacity < policy.min_capacity:
        raise ConfigError("min must be <= max", field="max", table_name=where)
    if policy.increase < 0:
        raise ConfigError("increase must be >= 0", field="increase", table_name=where)
    if not 0 < policy.threshold <= 1:
        raise ConfigError("threshold must be in (0, 1]", field="threshold", table_name=where)
