"""Batch runner: one scaling pass over every configured table."""

import asyncio
import contextlib
import time
from typing import Any

from ulid import ULID

from .applier import DynamoDBUpdateApplier
from .engine import ScalingEngine
from .metrics import CloudWatchMetricStore, MetricWindowResolver
from .models import BatchSummary, Direction, OutcomeStatus, ScalingPolicy, TableOutcome
from .protocols import PolicyStore
from .repository import PolicyRepository
from .schema_store import DynamoDBSchemaStore
from .settings import Settings
from .structured_log import StructuredLogger


class BatchRunner:
    """
    Runs the scaling engine for every configured table.

    Policies are loaded once per run and shared read-only by all table
    passes. Passes run concurrently, at most ``max_concurrency`` at a time.
    Every table yields a TableOutcome; a failing table never aborts the
    others, and ``run`` always returns a BatchSummary.

    Example:
        async with BatchRunner.from_settings(Settings.from_environment()) as runner:
            summary = await runner.scale_up_tables()
            print(summary.as_dict())

    Args:
        policy_store: Source of scaling policies
        engine: Per-table scaling engine
        max_concurrency: Tables evaluated at the same time
        batch_timeout_seconds: Deadline for the whole batch (0 = none)
        logger: Structured event sink
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        engine: ScalingEngine,
        max_concurrency: int = 8,
        batch_timeout_seconds: float = 0,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.policy_store = policy_store
        self.engine = engine
        self.max_concurrency = max_concurrency
        self.batch_timeout_seconds = batch_timeout_seconds
        self.logger = logger or StructuredLogger(__name__)
        self._closeables: list[Any] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchRunner":
        """Wire AWS-backed collaborators from settings."""
        repository = PolicyRepository(
            settings.config_table_name,
            region=settings.region,
            endpoint_url=settings.endpoint_url,
            defaults=settings.defaults,
            cache_ttl_seconds=settings.cache_ttl_seconds,
        )
        schema_store = DynamoDBSchemaStore(settings.region, settings.endpoint_url)
        metric_store = CloudWatchMetricStore(settings.region, settings.endpoint_url)
        applier = DynamoDBUpdateApplier(settings.region, settings.endpoint_url)

        runner = cls(
            policy_store=repository,
            engine=ScalingEngine(schema_store, MetricWindowResolver(metric_store), applier),
            max_concurrency=settings.max_concurrency,
            batch_timeout_seconds=settings.batch_timeout_seconds,
        )
        runner._closeables = [repository, schema_store, metric_store, applier]
        return runner

    async def close(self) -> None:
        """
        Close AWS clients created by ``from_settings``.

        Every client is closed even if an earlier one fails; the last
        failure is re-raised.
        """
        async with contextlib.AsyncExitStack() as stack:
            for closeable in reversed(self._closeables):
                stack.push_async_callback(closeable.close)

    async def __aenter__(self) -> "BatchRunner":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def scale_up_tables(self) -> BatchSummary:
        """Scale all configured tables up."""
        return await self.run(Direction.UP)

    async def scale_down_tables(self) -> BatchSummary:
        """Scale all configured tables down."""
        return await self.run(Direction.DOWN)

    async def run(self, direction: Direction) -> BatchSummary:
        """
        Run one pass in ``direction`` over every configured table.

        Never raises: a failure to load policies is reported in
        ``BatchSummary.error`` and per-table failures as FAILED outcomes.
        """
        start_time = time.perf_counter()
        summary = BatchSummary(run_id=str(ULID()), direction=direction)
        log = self.logger.with_context(run_id=summary.run_id)
        log.info(f"Scale {direction.value} started")

        try:
            loaded = await self.policy_store.load_all()
        except Exception as e:
            log.error(f"Scale {direction.value} failed to load policies", exc_info=True)
            summary.error = f"Failed to load policies: {e}"
            summary.duration_ms = (time.perf_counter() - start_time) * 1000
            return summary

        summary.rejected = list(loaded.rejected)
        for reason in loaded.rejected:
            log.warning("Rejected scaling config", reason=reason)

        summary.outcomes = await self._run_tables(loaded.policies, direction, log)
        summary.duration_ms = (time.perf_counter() - start_time) * 1000

        log.info(f"Scale {direction.value} completed", **summary.as_dict())
        return summary

    async def _run_tables(
        self,
        policies: list[ScalingPolicy],
        direction: Direction,
        log: StructuredLogger,
    ) -> list[TableOutcome]:
        if not policies:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._run_table(policy, direction, semaphore, log))
            for policy in policies
        ]
        timeout = self.batch_timeout_seconds or None
        _, pending = await asyncio.wait(tasks, timeout=timeout)

        if pending:
            log.warning(
                f"Scale {direction.value} timed out",
                timeout_seconds=self.batch_timeout_seconds,
                pending=len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes = []
        for policy, task in zip(policies, tasks, strict=True):
            if task in pending:
                outcomes.append(
                    TableOutcome(
                        policy.table_name,
                        direction,
                        OutcomeStatus.FAILED,
                        error="Batch timeout exceeded",
                    )
                )
            else:
                outcomes.append(task.result())
        return outcomes

    async def _run_table(
        self,
        policy: ScalingPolicy,
        direction: Direction,
        semaphore: asyncio.Semaphore,
        log: StructuredLogger,
    ) -> TableOutcome:
        async with semaphore:
            try:
                return await self.engine.scale_table(policy, direction, log)
            except Exception as e:
                log.error(
                    f"Scale {direction.value} table failed unexpectedly",
                    exc_info=True,
                    table=policy.table_name,
                )
                return TableOutcome(
                    policy.table_name, direction, OutcomeStatus.FAILED, error=str(e)
                )
