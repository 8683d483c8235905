"""Tests for the throughput update applier."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from zae_autoscaler.applier import DynamoDBUpdateApplier
from zae_autoscaler.exceptions import ApplyError
from zae_autoscaler.models import ThroughputUpdate, UpdatePatch


class TestDynamoDBUpdateApplier:
    """Tests for applying patches via UpdateTable."""

    def _make_client(self) -> MagicMock:
        """Create a mock DynamoDB client."""
        client = MagicMock()
        client.update_table = AsyncMock(return_value={})
        return client

    @pytest.mark.asyncio
    async def test_empty_patch_issues_no_call(self) -> None:
        client = self._make_client()
        await DynamoDBUpdateApplier(client=client).apply(UpdatePatch("Orders"))
        client.update_table.assert_not_called()

    @pytest.mark.asyncio
    async def test_table_and_index_update(self) -> None:
        client = self._make_client()
        patch = UpdatePatch(
            "Orders",
            table=ThroughputUpdate(60, 50),
            indexes={"byCustomer": ThroughputUpdate(10, 20)},
        )

        await DynamoDBUpdateApplier(client=client).apply(patch)

        client.update_table.assert_awaited_once_with(
            TableName="Orders",
            ProvisionedThroughput={"ReadCapacityUnits": 60, "WriteCapacityUnits": 50},
            GlobalSecondaryIndexUpdates=[
                {
                    "Update": {
                        "IndexName": "byCustomer",
                        "ProvisionedThroughput": {
                            "ReadCapacityUnits": 10,
                            "WriteCapacityUnits": 20,
                        },
                    }
                }
            ],
        )

    @pytest.mark.asyncio
    async def test_failure_raises_apply_error(self) -> None:
        client = self._make_client()
        client.update_table.side_effect = ClientError(
            {"Error": {"Code": "LimitExceededException", "Message": "too many decreases"}},
            "UpdateTable",
        )
        patch = UpdatePatch("Orders", table=ThroughputUpdate(5, 5))

        with pytest.raises(ApplyError) as exc_info:
            await DynamoDBUpdateApplier(client=client).apply(patch)

        assert exc_info.value.table_name == "Orders"
        assert "LimitExceededException" in str(exc_info.value)
        client.update_table.assert_awaited_once()
