"""Collaborator protocols for the scaling engine.

The engine and batch runner only depend on these protocols. The AWS-backed
implementations live in ``repository``, ``schema_store``, ``metrics`` and
``applier``; tests and alternative backends can supply any object with
matching methods. All protocols are ``@runtime_checkable`` so isinstance()
works for duck-typed implementations.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Dimension, LoadedPolicies, TableState, UpdatePatch


@runtime_checkable
class PolicyStore(Protocol):
    """Source of per-table scaling policies."""

    async def load_all(self) -> "LoadedPolicies":
        """
        Load every configured policy.

        Entries with a missing or invalid ``tableName`` (or other invalid
        fields) are reported in ``LoadedPolicies.rejected``, never
        defaulted.

        Raises:
            PolicyStoreError: If the store cannot be read at all
        """
        ...


@runtime_checkable
class SchemaStore(Protocol):
    """Source of current table status and provisioned throughput."""

    async def describe(self, table_name: str) -> "TableState":
        """
        Describe a table and its global secondary indexes.

        Raises:
            SchemaFetchError: If the description cannot be retrieved
        """
        ...


@runtime_checkable
class MetricStore(Protocol):
    """Time-windowed consumption statistics."""

    async def query(
        self,
        table_name: str,
        index_name: str | None,
        dimension: "Dimension",
        start: datetime,
        end: datetime,
    ) -> float:
        """
        Sum of consumed capacity units in ``[start, end]``.

        Returns 0.0 when no datapoints were reported in the window.

        Raises:
            MetricFetchError: If the query fails
        """
        ...


@runtime_checkable
class UpdateApplier(Protocol):
    """Applies a non-empty throughput patch in one call."""

    async def apply(self, patch: "UpdatePatch") -> None:
        """
        Apply the patch atomically.

        Raises:
            ApplyError: If the update call fails
        """
        ...
