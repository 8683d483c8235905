"""Table descriptions from DynamoDB."""

from datetime import UTC, datetime
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import SchemaFetchError
from .models import ResourceState, TableState


def parse_table_description(table: dict[str, Any]) -> TableState:
    """
    Build a TableState from the ``Table`` member of a DescribeTable response.

    Only the fields the scaling engine consumes are read: status,
    provisioned throughput, last increase time and billing mode.
    """
    table_name = table["TableName"]
    billing_mode = table.get("BillingModeSummary", {}).get("BillingMode", "PROVISIONED")

    indexes: dict[str, ResourceState] = {}
    for index in table.get("GlobalSecondaryIndexes") or []:
        index_name = index["IndexName"]
        indexes[index_name] = _resource_state(
            table_name,
            index_name,
            index.get("IndexStatus", ""),
            index.get("ProvisionedThroughput", {}),
        )

    return TableState(
        table=_resource_state(
            table_name,
            None,
            table.get("TableStatus", ""),
            table.get("ProvisionedThroughput", {}),
        ),
        indexes=indexes,
        billing_mode=billing_mode,
    )


def _resource_state(
    table_name: str,
    index_name: str | None,
    status: str,
    throughput: dict[str, Any],
) -> ResourceState:
    return ResourceState(
        table_name=table_name,
        index_name=index_name,
        status=status,
        provisioned_read=int(throughput.get("ReadCapacityUnits", 0)),
        provisioned_write=int(throughput.get("WriteCapacityUnits", 0)),
        last_increase=_parse_timestamp(throughput.get("LastIncreaseDateTime")),
    )


def _parse_timestamp(value: Any) -> datetime | None:
    """botocore returns datetimes; raw JSON responses carry epoch seconds."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    # Naive timestamps are UTC
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


class DynamoDBSchemaStore:
    """
    Reads table status and provisioned throughput via DescribeTable.

    Example:
        async with DynamoDBSchemaStore(region="us-east-1") as store:
            state = await store.describe("Orders")
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
        """Get or create the DynamoDB client."""
        if self._client is None:
            self._session = aioboto3.Session()
            self._client = await self._session.client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
            ).__aenter__()
        return self._client

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client is not None and self._owns_client:
            await self._client.__aexit__(None, None, None)
            self._client = None
            self._session = None

    async def __aenter__(self) -> "DynamoDBSchemaStore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def describe(self, table_name: str) -> TableState:
        """
        Describe a table and its global secondary indexes.

        Raises:
            SchemaFetchError: If DescribeTable fails or returns no table
        """
        client = await self._get_client()
        try:
            response = await client.describe_table(TableName=table_name)
        except (ClientError, BotoCoreError) as e:
            raise SchemaFetchError("Failed to describe table", e, table_name=table_name) from e

        table = response.get("Table")
        if not table:
            raise SchemaFetchError("DescribeTable returned no table", table_name=table_name)
        return parse_table_description(table)
