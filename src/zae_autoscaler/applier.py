"""Applies throughput patches to DynamoDB."""

import logging
from typing import Any

import aioboto3  # type: ignore[import-untyped]
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import ApplyError
from .models import UpdatePatch

logger = logging.getLogger(__name__)


class DynamoDBUpdateApplier:
    """
    Issues one UpdateTable call per non-empty patch.

    The call is all-or-nothing for the table and indexes it names. Failed
    calls raise ApplyError and are not retried.
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

    async def __aenter__(self) -> "DynamoDBUpdateApplier":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def apply(self, patch: UpdatePatch) -> None:
        """
        Apply a throughput patch.

        Args:
            patch: Patch to apply; an empty patch issues no call

        Raises:
            ApplyError: If UpdateTable fails
        """
        if patch.is_empty:
            return

        client = await self._get_client()
        request = patch.to_request()
        logger.debug("UpdateTable request: %s", request)
        try:
            await client.update_table(**request)
        except (ClientError, BotoCoreError) as e:
            raise ApplyError("Failed to update throughput", e, table_name=patch.table_name) from e
