"""DynamoDB repository for scaling policies."""

import logging
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from .config_cache import PolicyCache
from .exceptions import ConfigError, PolicyStoreError
from .models import LoadedPolicies, PolicyDefaults, ScalingPolicy
from .settings import DEFAULT_CONFIG_TABLE_NAME

logger = logging.getLogger(__name__)

# Partition key of the config table
KEY_ATTRIBUTE = "tableName"


class PolicyRepository:
    """
    Async DynamoDB repository for per-table scaling policies.

    Each item in the config table is one table's policy keyed by
    ``tableName``. Loaded policies are kept in a PolicyCache owned by this
    repository; ``save`` and ``delete`` invalidate it.

    Example:
        async with PolicyRepository("autoscale-config") as repo:
            loaded = await repo.load_all()
            for policy in loaded.policies:
                print(policy.table_name)
    """

    def __init__(
        self,
        config_table_name: str = DEFAULT_CONFIG_TABLE_NAME,
        region: str | None = None,
        endpoint_url: str | None = None,
        defaults: PolicyDefaults | None = None,
        cache_ttl_seconds: int = 60,
        client: Any | None = None,
    ) -> None:
        if not config_table_name:
            raise ConfigError("Config table name is required", field="config_table_name")
        self.table_name = config_table_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.defaults = defaults or PolicyDefaults()
        self.cache = PolicyCache(ttl_seconds=cache_ttl_seconds)
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

    async def __aenter__(self) -> "PolicyRepository":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Table operations
    # -------------------------------------------------------------------------

    async def create_table(self) -> None:
        """Create the config table if it doesn't exist."""
        client = await self._get_client()
        try:
            await client.create_table(
                TableName=self.table_name,
                KeySchema=[{"AttributeName": KEY_ATTRIBUTE, "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": KEY_ATTRIBUTE, "AttributeType": "S"}],
                BillingMode="PAY_PER_REQUEST",
            )
            waiter = client.get_waiter("table_exists")
            await waiter.wait(TableName=self.table_name)
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceInUseException":
                raise PolicyStoreError("Failed to create config table", e) from e

    # -------------------------------------------------------------------------
    # Policy operations
    # -------------------------------------------------------------------------

    async def load_all(self) -> LoadedPolicies:
        """
        Load every policy from the config table (cached).

        Invalid entries are rejected individually and reported in
        ``LoadedPolicies.rejected``.

        Raises:
            PolicyStoreError: If the config table cannot be scanned
        """
        return await self.cache.get_all(self._scan_policies)

    async def fetch(self, table_name: str) -> ScalingPolicy | None:
        """
        Get the policy for one table (cached).

        Returns:
            The policy, or None if the table is not configured

        Raises:
            ConfigError: If the stored item is invalid
            PolicyStoreError: If the config table cannot be read
        """
        return await self.cache.get_policy(table_name, self._get_policy)

    async def save(self, policy: ScalingPolicy | dict[str, Any]) -> ScalingPolicy:
        """
        Create or replace a table's policy.

        Accepts a ScalingPolicy or its persisted dict form, which is
        validated before writing.

        Raises:
            ConfigError: If the policy is invalid
            PolicyStoreError: If the write fails
        """
        if not isinstance(policy, ScalingPolicy):
            policy = ScalingPolicy.from_dict(policy, self.defaults)

        client = await self._get_client()
        try:
            await client.put_item(
                TableName=self.table_name,
                Item=self._serialize_map(policy.to_dict()),
            )
        except (ClientError, BotoCoreError) as e:
            raise PolicyStoreError(
                "Failed to save policy", e, table_name=policy.table_name
            ) from e
        finally:
            await self.cache.invalidate()
        return policy

    async def delete(self, table_name: str) -> None:
        """
        Delete a table's policy. Deleting a missing policy is not an error.

        Raises:
            PolicyStoreError: If the delete fails
        """
        client = await self._get_client()
        try:
            await client.delete_item(
                TableName=self.table_name,
                Key={KEY_ATTRIBUTE: {"S": table_name}},
            )
        except (ClientError, BotoCoreError) as e:
            raise PolicyStoreError("Failed to delete policy", e, table_name=table_name) from e
        finally:
            await self.cache.invalidate()

    async def _scan_policies(self) -> LoadedPolicies:
        """Scan the config table and parse every item."""
        client = await self._get_client()
        loaded = LoadedPolicies()
        kwargs: dict[str, Any] = {"TableName": self.table_name}

        while True:
            try:
                response = await client.scan(**kwargs)
            except (ClientError, BotoCoreError) as e:
                raise PolicyStoreError("Failed to scan config table", e) from e

            for item in response.get("Items", []):
                data = self._deserialize_map(item)
                try:
                    loaded.policies.append(ScalingPolicy.from_dict(data, self.defaults))
                except ConfigError as e:
                    logger.warning("Rejected scaling config %r: %s", data.get(KEY_ATTRIBUTE), e)
                    loaded.rejected.append(str(e))

            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key

        return loaded

    async def _get_policy(self, table_name: str) -> ScalingPolicy | None:
        """Read and parse one config item."""
        client = await self._get_client()
        try:
            response = await client.get_item(
                TableName=self.table_name,
                Key={KEY_ATTRIBUTE: {"S": table_name}},
            )
        except (ClientError, BotoCoreError) as e:
            raise PolicyStoreError("Failed to read policy", e, table_name=table_name) from e

        item = response.get("Item")
        if not item:
            return None
        return ScalingPolicy.from_dict(self._deserialize_map(item), self.defaults)

    # -------------------------------------------------------------------------
    # Serialization helpers
    # -------------------------------------------------------------------------

    def _serialize_map(self, data: dict[str, Any]) -> dict[str, Any]:
        """Serialize a Python dict to DynamoDB map format."""
        return {key: self._serialize_value(value) for key, value in data.items()}

    def _serialize_value(self, value: Any) -> dict[str, Any]:
        """Serialize a single value to DynamoDB format."""
        if isinstance(value, str):
            return {"S": value}
        elif isinstance(value, bool):
            return {"BOOL": value}
        elif isinstance(value, (int, float)):
            return {"N": str(value)}
        elif isinstance(value, dict):
            return {"M": self._serialize_map(value)}
        elif isinstance(value, list):
            return {"L": [self._serialize_value(v) for v in value]}
        elif value is None:
            return {"NULL": True}
        return {"S": str(value)}

    def _deserialize_map(self, data: dict[str, Any]) -> dict[str, Any]:
        """Deserialize a DynamoDB map to Python dict."""
        return {key: self._deserialize_value(value) for key, value in data.items()}

    def _deserialize_value(self, value: dict[str, Any]) -> Any:
        """Deserialize a single DynamoDB value."""
        if "S" in value:
            return value["S"]
        elif "N" in value:
            num_str = value["N"]
            if "." in num_str or "e" in num_str.lower():
                return float(num_str)
            return int(num_str)
        elif "BOOL" in value:
            return value["BOOL"]
        elif "M" in value:
            return self._deserialize_map(value["M"])
        elif "L" in value:
            return [self._deserialize_value(v) for v in value["L"]]
        return None
