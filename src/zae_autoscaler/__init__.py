"""
zae-autoscaler: Provisioned throughput auto-scaling for DynamoDB tables.

Each batch run loads per-table scaling policies, measures consumed
capacity over a trailing window and adjusts provisioned read/write
capacity of tables and their global secondary indexes:

- Threshold-activated scale up by a configurable increment
- Demand-targeted scale down with a cool-down after every increase
- Per-index policy overrides layered on table policies and defaults
- One minimal UpdateTable call per table, only when something changed

Example:
    from zae_autoscaler import BatchRunner, Settings

    async with BatchRunner.from_settings(Settings.from_environment()) as runner:
        summary = await runner.scale_up_tables()
        print(summary.as_dict())
"""

from .applier import DynamoDBUpdateApplier
from .config_cache import CacheStats, PolicyCache
from .engine import ScalingEngine, ScalingPlan, build_patch
from .exceptions import (
    ApplyError,
    ConfigError,
    InfrastructureError,
    MetricFetchError,
    PolicyStoreError,
    SchemaFetchError,
    ZAEAutoscalerError,
)
from .manifest import PolicyManifest
from .metrics import CloudWatchMetricStore, MetricWindowResolver
from .models import (
    BatchSummary,
    Dimension,
    Direction,
    LoadedPolicies,
    MetricSample,
    OutcomeStatus,
    PolicyDefaults,
    PolicyOverride,
    ResolvedPolicy,
    ResourceState,
    ScalingDecision,
    ScalingPolicy,
    TableOutcome,
    TableState,
    ThroughputUpdate,
    UpdatePatch,
    parse_time_span,
)
from .policy import apply_scaling, clamp, scale_down, scale_up
from .protocols import MetricStore, PolicyStore, SchemaStore, UpdateApplier
from .repository import PolicyRepository
from .runner import BatchRunner
from .schema_store import DynamoDBSchemaStore, parse_table_description
from .settings import Settings, defaults_from_environment
from .structured_log import StructuredLogger

try:
    from ._version import __version__  # type: ignore[import-not-found]
except ImportError:
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Runner and engine
    "BatchRunner",
    "ScalingEngine",
    "ScalingPlan",
    "build_patch",
    "MetricWindowResolver",
    # Policy arithmetic
    "apply_scaling",
    "clamp",
    "scale_down",
    "scale_up",
    # Models
    "BatchSummary",
    "Dimension",
    "Direction",
    "LoadedPolicies",
    "MetricSample",
    "OutcomeStatus",
    "PolicyDefaults",
    "PolicyOverride",
    "ResolvedPolicy",
    "ResourceState",
    "ScalingDecision",
    "ScalingPolicy",
    "TableOutcome",
    "TableState",
    "ThroughputUpdate",
    "UpdatePatch",
    "parse_time_span",
    # Collaborators
    "CloudWatchMetricStore",
    "DynamoDBSchemaStore",
    "DynamoDBUpdateApplier",
    "PolicyManifest",
    "PolicyRepository",
    "parse_table_description",
    "MetricStore",
    "PolicyStore",
    "SchemaStore",
    "UpdateApplier",
    # Configuration and logging
    "CacheStats",
    "PolicyCache",
    "Settings",
    "defaults_from_environment",
    "StructuredLogger",
    # Exceptions
    "ZAEAutoscalerError",
    "ConfigError",
    "InfrastructureError",
    "PolicyStoreError",
    "SchemaFetchError",
    "MetricFetchError",
    "ApplyError",
]
