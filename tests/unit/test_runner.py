"""Tests for the batch runner."""

import asyncio
import json

import pytest

from tests.fixtures.stores import (
    FakeApplier,
    FakeMetricStore,
    FakePolicyStore,
    FakeSchemaStore,
    fixed_clock,
    make_table,
)
from zae_autoscaler.engine import ScalingEngine
from zae_autoscaler.exceptions import PolicyStoreError
from zae_autoscaler.metrics import MetricWindowResolver
from zae_autoscaler.models import (
    Dimension,
    Direction,
    OutcomeStatus,
    ScalingPolicy,
    TableOutcome,
)
from zae_autoscaler.repository import PolicyRepository
from zae_autoscaler.runner import BatchRunner
from zae_autoscaler.settings import Settings
from zae_autoscaler.structured_log import StructuredLogger

UP_WINDOW = 300.0


def _policy(name: str) -> ScalingPolicy:
    return ScalingPolicy.from_dict(
        {"tableName": name, "min": 5, "max": 100, "increase": 10, "threshold": 0.7}
    )


@pytest.fixture
def schema_store() -> FakeSchemaStore:
    return FakeSchemaStore(
        tables={name: make_table(name) for name in ("Orders", "Users", "Events")}
    )


@pytest.fixture
def metric_store() -> FakeMetricStore:
    return FakeMetricStore()


@pytest.fixture
def applier(schema_store: FakeSchemaStore) -> FakeApplier:
    return FakeApplier(schema_store=schema_store)


@pytest.fixture
def engine(
    schema_store: FakeSchemaStore, metric_store: FakeMetricStore, applier: FakeApplier
) -> ScalingEngine:
    return ScalingEngine(
        schema_store,
        MetricWindowResolver(metric_store, clock=fixed_clock),
        applier,
        clock=fixed_clock,
    )


class SlowEngine:
    """Engine stand-in tracking how many tables run at once."""

    def __init__(self, delay: float = 0.01, hang: set[str] | None = None) -> None:
        self.delay = delay
        self.hang = hang or set()
        self.active = 0
        self.peak = 0

    async def scale_table(
        self,
        policy: ScalingPolicy,
        direction: Direction,
        logger: StructuredLogger | None = None,
    ) -> TableOutcome:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(60 if policy.table_name in self.hang else self.delay)
        finally:
            self.active -= 1
        return TableOutcome(policy.table_name, direction, OutcomeStatus.NO_OP)


class TestBatchRunner:
    """Tests for BatchRunner.run()."""

    @pytest.mark.asyncio
    async def test_one_outcome_per_policy(
        self, engine: ScalingEngine, metric_store: FakeMetricStore
    ) -> None:
        metric_store.set_rate("Users", None, Dimension.WRITE, 45, UP_WINDOW)
        store = FakePolicyStore(policies=[_policy("Orders"), _policy("Users")])
        runner = BatchRunner(store, engine)

        summary = await runner.scale_up_tables()

        assert summary.direction == Direction.UP
        assert [o.table_name for o in summary.outcomes] == ["Orders", "Users"]
        assert summary.attempted == 2
        assert summary.changed == 1
        assert summary.failed == 0
        assert summary.error is None
        assert store.loads == 1

    @pytest.mark.asyncio
    async def test_failing_table_isolated(
        self,
        engine: ScalingEngine,
        metric_store: FakeMetricStore,
        applier: FakeApplier,
    ) -> None:
        """A table whose description fails does not affect the others."""
        metric_store.set_rate("Orders", None, Dimension.READ, 40, UP_WINDOW)
        metric_store.set_rate("Events", None, Dimension.READ, 40, UP_WINDOW)
        store = FakePolicyStore(
            policies=[_policy("Orders"), _policy("Missing"), _policy("Events")]
        )

        summary = await BatchRunner(store, engine).run(Direction.UP)

        statuses = {o.table_name: o.status for o in summary.outcomes}
        assert statuses == {
            "Orders": OutcomeStatus.UPDATED,
            "Missing": OutcomeStatus.FAILED,
            "Events": OutcomeStatus.UPDATED,
        }
        assert summary.as_dict()["failed_tables"] == ["Missing"]
        assert sorted(p.table_name for p in applier.applied) == ["Events", "Orders"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_isolated(self) -> None:
        class BrokenEngine(SlowEngine):
            async def scale_table(self, policy, direction, logger=None):
                if policy.table_name == "Users":
                    raise RuntimeError("boom")
                return await super().scale_table(policy, direction, logger)

        store = FakePolicyStore(policies=[_policy("Orders"), _policy("Users")])

        summary = await BatchRunner(store, BrokenEngine()).run(Direction.DOWN)  # type: ignore[arg-type]

        assert summary.outcomes[0].status == OutcomeStatus.NO_OP
        assert summary.outcomes[1].status == OutcomeStatus.FAILED
        assert summary.outcomes[1].error == "boom"

    @pytest.mark.asyncio
    async def test_load_failure_reported(self, engine: ScalingEngine) -> None:
        store = FakePolicyStore(error=PolicyStoreError("Failed to scan config table"))

        summary = await BatchRunner(store, engine).scale_down_tables()

        assert summary.outcomes == []
        assert summary.attempted == 0
        assert summary.error is not None
        assert "Failed to scan config table" in summary.error

    @pytest.mark.asyncio
    async def test_empty_policy_set(self, engine: ScalingEngine) -> None:
        summary = await BatchRunner(FakePolicyStore(), engine).run(Direction.UP)
        assert summary.attempted == 0
        assert summary.error is None

    @pytest.mark.asyncio
    async def test_rejected_entries_reported(self, engine: ScalingEngine) -> None:
        store = FakePolicyStore(
            policies=[_policy("Orders")],
            rejected=["threshold must be in (0, 1] [table=Broken, field=threshold]"],
        )

        summary = await BatchRunner(store, engine).run(Direction.UP)

        assert summary.attempted == 1
        assert len(summary.rejected) == 1

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self) -> None:
        engine = SlowEngine()
        store = FakePolicyStore(policies=[_policy(f"T{i}") for i in range(10)])

        summary = await BatchRunner(store, engine, max_concurrency=3).run(Direction.UP)  # type: ignore[arg-type]

        assert summary.attempted == 10
        assert engine.peak == 3

    @pytest.mark.asyncio
    async def test_timeout_fails_pending_tables(self) -> None:
        engine = SlowEngine(hang={"Users"})
        store = FakePolicyStore(policies=[_policy("Orders"), _policy("Users")])
        runner = BatchRunner(store, engine, batch_timeout_seconds=0.1)  # type: ignore[arg-type]

        summary = await runner.run(Direction.UP)

        assert [o.status for o in summary.outcomes] == [
            OutcomeStatus.NO_OP,
            OutcomeStatus.FAILED,
        ]
        assert summary.outcomes[1].error == "Batch timeout exceeded"
        assert engine.active == 0

    @pytest.mark.asyncio
    async def test_run_id_logged(
        self, engine: ScalingEngine, capsys: pytest.CaptureFixture[str]
    ) -> None:
        summary = await BatchRunner(FakePolicyStore(), engine).run(Direction.UP)

        entries = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        completed = [e for e in entries if e["message"] == "Scale up completed"]
        assert len(completed) == 1
        assert completed[0]["run_id"] == summary.run_id
        assert completed[0]["attempted"] == 0

    @pytest.mark.asyncio
    async def test_run_id_on_every_table_event(
        self,
        engine: ScalingEngine,
        metric_store: FakeMetricStore,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        metric_store.set_rate("Orders", None, Dimension.READ, 40, UP_WINDOW)
        store = FakePolicyStore(policies=[_policy("Orders")])

        summary = await BatchRunner(store, engine).run(Direction.UP)

        entries = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        messages = {e["message"] for e in entries}
        assert {"Scale up table", "Getting table schema", "Scaling"} <= messages
        assert "Scale up table succeeded" in messages
        assert [e["message"] for e in entries if e.get("run_id") != summary.run_id] == []

    @pytest.mark.asyncio
    async def test_run_ids_unique(self, engine: ScalingEngine) -> None:
        runner = BatchRunner(FakePolicyStore(), engine)
        first = await runner.run(Direction.UP)
        second = await runner.run(Direction.UP)
        assert first.run_id != second.run_id


class TestFromSettings:
    """Tests for BatchRunner.from_settings()."""

    @pytest.mark.asyncio
    async def test_wires_collaborators(self) -> None:
        settings = Settings(config_table_name="my-config", region="eu-west-1", max_concurrency=2)

        async with BatchRunner.from_settings(settings) as runner:
            assert isinstance(runner.policy_store, PolicyRepository)
            assert runner.policy_store.table_name == "my-config"
            assert runner.max_concurrency == 2
            assert runner.batch_timeout_seconds == settings.batch_timeout_seconds
            assert len(runner._closeables) == 4


class ClosableClient:
    """Records close() calls; optionally fails."""

    def __init__(self, calls: list[str], name: str, fail: bool = False) -> None:
        self.calls = calls
        self.name = name
        self.fail = fail

    async def close(self) -> None:
        self.calls.append(self.name)
        if self.fail:
            raise RuntimeError(f"{self.name} close failed")


class TestClose:
    """Tests for BatchRunner.close()."""

    @pytest.mark.asyncio
    async def test_closes_in_order(self, engine: ScalingEngine) -> None:
        calls: list[str] = []
        runner = BatchRunner(FakePolicyStore(), engine)
        runner._closeables = [ClosableClient(calls, name) for name in ("a", "b", "c")]

        await runner.close()

        assert calls == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_failing_client_does_not_leave_others_open(
        self, engine: ScalingEngine
    ) -> None:
        calls: list[str] = []
        runner = BatchRunner(FakePolicyStore(), engine)
        runner._closeables = [
            ClosableClient(calls, "repository", fail=True),
            ClosableClient(calls, "schema_store"),
            ClosableClient(calls, "metric_store"),
        ]

        with pytest.raises(RuntimeError, match="repository close failed"):
            await runner.close()

        assert calls == ["repository", "schema_store", "metric_store"]
