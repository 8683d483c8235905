"""Scaling decision engine: one pass for one table in one direction."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from .exceptions import ZAEAutoscalerError
from .metrics import MetricWindowResolver
from .models import (
    Dimension,
    Direction,
    MetricSample,
    OutcomeStatus,
    ScalingDecision,
    ScalingPolicy,
    TableOutcome,
    TableState,
    ThroughputUpdate,
    UpdatePatch,
)
from .policy import apply_scaling
from .protocols import SchemaStore, UpdateApplier
from .structured_log import StructuredLogger


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ScalingPlan:
    """Decisions and patch computed for one table, before applying."""

    table_name: str
    direction: Direction
    decisions: list[ScalingDecision] = field(default_factory=list)
    patch: UpdatePatch | None = None
    skipped_reason: str | None = None

    @property
    def is_noop(self) -> bool:
        return self.patch is None or self.patch.is_empty


def build_patch(table: TableState, decisions: list[ScalingDecision]) -> UpdatePatch:
    """
    Assemble the minimal throughput patch for a table.

    A resource is included only if at least one of its dimensions changed.
    Included resources carry final values for both dimensions; a dimension
    without a decision keeps its current capacity.
    """
    by_resource: dict[str | None, dict[Dimension, ScalingDecision]] = {}
    for decision in decisions:
        by_resource.setdefault(decision.index_name, {})[decision.dimension] = decision

    def _update(index_name: str | None) -> ThroughputUpdate | None:
        resource_decisions = by_resource.get(index_name, {})
        if not any(d.changed for d in resource_decisions.values()):
            return None
        resource = table.resource(index_name)
        read = resource_decisions.get(Dimension.READ)
        write = resource_decisions.get(Dimension.WRITE)
        return ThroughputUpdate(
            read_capacity_units=read.new_provisioned if read else resource.provisioned_read,
            write_capacity_units=write.new_provisioned if write else resource.provisioned_write,
        )

    indexes: dict[str, ThroughputUpdate] = {}
    for index_name in table.indexes:
        update = _update(index_name)
        if update is not None:
            indexes[index_name] = update

    return UpdatePatch(table_name=table.table_name, table=_update(None), indexes=indexes)


class ScalingEngine:
    """
    Runs scaling passes for individual tables.

    A pass describes the table, fetches consumption over the direction's
    analysis window, decides new capacity per resource dimension and
    issues at most one update call with the resulting patch.

    Args:
        schema_store: Source of table descriptions
        metrics: Resolver producing consumption samples
        applier: Applies non-empty patches
        logger: Structured event sink
        clock: Returns the current time (injected for testing)
    """

    def __init__(
        self,
        schema_store: SchemaStore,
        metrics: MetricWindowResolver,
        applier: UpdateApplier,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.schema_store = schema_store
        self.metrics = metrics
        self.applier = applier
        self.logger = logger or StructuredLogger(__name__)
        self.clock = clock

    async def plan(
        self,
        policy: ScalingPolicy,
        direction: Direction,
        logger: StructuredLogger | None = None,
    ) -> ScalingPlan:
        """
        Compute decisions and the patch for one table without applying it.

        ``logger`` overrides the engine logger for this pass (e.g. one bound
        to a batch run_id).

        Raises:
            SchemaFetchError: If the table cannot be described
            MetricFetchError: If any consumption query fails
        """
        table_name = policy.table_name
        log = logger or self.logger
        log.debug("Getting table schema", table=table_name, direction=direction.value)
        table = await self.schema_store.describe(table_name)

        if table.is_on_demand:
            log.info("Table uses on-demand capacity, skipping", table=table_name)
            return ScalingPlan(table_name, direction, skipped_reason="on-demand")

        window = policy.resolve_for(None).window(direction)
        samples = await self.metrics.resolve(table, window)
        decisions = self._decide(policy, direction, table, samples, window, log)
        return ScalingPlan(
            table_name=table_name,
            direction=direction,
            decisions=decisions,
            patch=build_patch(table, decisions),
        )

    async def scale_table(
        self,
        policy: ScalingPolicy,
        direction: Direction,
        logger: StructuredLogger | None = None,
    ) -> TableOutcome:
        """
        Run a full pass for one table and report the outcome.

        Library errors (schema, metric, apply and config failures) become a
        FAILED outcome; they never propagate to the caller.
        """
        table_name = policy.table_name
        log = logger or self.logger
        log.info(f"Scale {direction.value} table", table=table_name)

        try:
            plan = await self.plan(policy, direction, log)
            if plan.skipped_reason:
                outcome = TableOutcome(table_name, direction, OutcomeStatus.SKIPPED)
            elif plan.is_noop:
                outcome = TableOutcome(
                    table_name, direction, OutcomeStatus.NO_OP, decisions=plan.decisions
                )
            else:
                assert plan.patch is not None
                await self.applier.apply(plan.patch)
                outcome = TableOutcome(
                    table_name,
                    direction,
                    OutcomeStatus.UPDATED,
                    decisions=plan.decisions,
                    patch=plan.patch,
                )
        except ZAEAutoscalerError as e:
            log.error(
                f"Scale {direction.value} table failed",
                table=table_name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return TableOutcome(table_name, direction, OutcomeStatus.FAILED, error=str(e))

        log.info(
            f"Scale {direction.value} table succeeded",
            table=table_name,
            status=outcome.status.value,
            changes=[d.to_dict() for d in outcome.decisions if d.changed],
        )
        return outcome

    def _decide(
        self,
        policy: ScalingPolicy,
        direction: Direction,
        table: TableState,
        samples: list[MetricSample],
        window: timedelta,
        log: StructuredLogger,
    ) -> list[ScalingDecision]:
        now = self.clock()
        decisions: list[ScalingDecision] = []

        for sample in samples:
            resource = table.resource(sample.index_name)

            if not resource.is_active:
                log.info(
                    "Resource is not ACTIVE, skipping",
                    resource=resource.label,
                    status=resource.status,
                )
                continue

            # Down-window doubles as the cool-down after an increase
            if (
                direction == Direction.DOWN
                and resource.last_increase is not None
                and now - resource.last_increase < window
            ):
                log.info(
                    "Resource was just scaled up, skipping",
                    resource=resource.label,
                    last_increase=resource.last_increase.isoformat(),
                )
                continue

            current = resource.provisioned(sample.dimension)
            consumed = sample.consumed_per_second
            new_provisioned = apply_scaling(
                direction, sample.dimension, policy, sample.index_name, current, consumed
            )
            decision = ScalingDecision(
                table_name=table.table_name,
                index_name=sample.index_name,
                dimension=sample.dimension,
                current_provisioned=current,
                consumed_per_second=consumed,
                new_provisioned=new_provisioned,
            )
            decisions.append(decision)

            if decision.changed:
                log.log(
                    "Scaling",
                    action=f"SCALE {direction.value.upper()}",
                    table=table.table_name,
                    index=sample.index_name,
                    parameter=sample.dimension.throughput_field,
                    consumed=consumed,
                    provisioned=current,
                    scaled=new_provisioned,
                )

        return decisions
