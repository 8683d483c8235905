"""Consumed capacity metrics for tables and their indexes."""

import asyncio
import logging
import math
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import MetricFetchError
from .models import Dimension, MetricSample, TableState
from .protocols import MetricStore

logger = logging.getLogger(__name__)

NAMESPACE = "AWS/DynamoDB"

ALL_DIMENSIONS: tuple[Dimension, ...] = (Dimension.READ, Dimension.WRITE)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def metric_period(window: timedelta) -> int:
    """
    CloudWatch period covering ``window`` in a single bucket.

    Periods of a minute or more must be a multiple of 60, so the window is
    rounded up to whole minutes. The query range still bounds the sum.
    """
    return max(60, math.ceil(window.total_seconds() / 60) * 60)


class CloudWatchMetricStore:
    """
    Sums DynamoDB consumed capacity via CloudWatch GetMetricStatistics.

    Each query asks for a single bucket spanning the whole window, so the
    ``Sum`` statistic is the total consumption in the window.
    """

    def __init__(
        self,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = client
        self._owns_client = client is None

    async def _get_client(self) -> Any:
        """Get or create the CloudWatch client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "cloudwatch",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the CloudWatch client."""
        if self._client is not None and self._owns_client:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def __aenter__(self) -> "CloudWatchMetricStore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def query(
        self,
        table_name: str,
        index_name: str | None,
        dimension: Dimension,
        start: datetime,
        end: datetime,
    ) -> float:
        """
        Sum of consumed units for one resource dimension in ``[start, end]``.

        Returns 0.0 when CloudWatch reports no datapoints (no traffic).

        Raises:
            MetricFetchError: If the statistics query fails
        """
        dimensions = [{"Name": "TableName", "Value": table_name}]
        if index_name:
            dimensions.append({"Name": "GlobalSecondaryIndexName", "Value": index_name})

        client = await self._get_client()
        try:
            response = await client.get_metric_statistics(
                Namespace=NAMESPACE,
                MetricName=dimension.metric_name,
                Dimensions=dimensions,
                StartTime=start,
                EndTime=end,
                Period=metric_period(end - start),
                Statistics=["Sum"],
                Unit="Count",
            )
        except (ClientError, BotoCoreError) as e:
            raise MetricFetchError(
                f"Failed to query {dimension.metric_name}",
                e,
                table_name=table_name,
                index_name=index_name,
            ) from e

        return float(sum(point.get("Sum", 0.0) for point in response.get("Datapoints", [])))


class MetricWindowResolver:
    """
    Produces one MetricSample per (resource, dimension) for a table.

    Resources are the table itself and each of its global secondary
    indexes. All queries for one table run concurrently; the first failure
    propagates and no partial result is returned.

    Args:
        store: Metric backend (CloudWatch in production)
        clock: Returns the current time (injected for testing)
    """

    def __init__(
        self,
        store: MetricStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.clock = clock

    async def resolve(
        self,
        table: TableState,
        window: timedelta,
        dimensions: Iterable[Dimension] = ALL_DIMENSIONS,
    ) -> list[MetricSample]:
        """
        Fetch consumption samples over ``[now - window, now]``.

        Args:
            table: Current table description (supplies the index list)
            window: Analysis window length
            dimensions: Capacity dimensions to query

        Returns:
            Samples for the table and every index, table first

        Raises:
            MetricFetchError: If any individual query fails
        """
        end = self.clock()
        start = end - window
        window_seconds = window.total_seconds()

        targets = [
            (resource.index_name, dimension)
            for resource in table.resources()
            for dimension in dimensions
        ]
        sums = await asyncio.gather(
            *(
                self.store.query(table.table_name, index_name, dimension, start, end)
                for index_name, dimension in targets
            )
        )

        samples = []
        for (index_name, dimension), total in zip(targets, sums, strict=True):
            samples.append(
                MetricSample(
                    table_name=table.table_name,
                    index_name=index_name,
                    dimension=dimension,
                    sum_consumed_units=total,
                    window_seconds=window_seconds,
                )
            )
            logger.debug(
                "Received %s for %s:%s: sum=%s per_second=%s",
                dimension.metric_name,
                table.table_name,
                index_name or "-",
                total,
                total / window_seconds,
            )
        return samples
