"""Exceptions for zae-autoscaler."""

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class ZAEAutoscalerError(Exception):
    """
    Base exception for all zae-autoscaler errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Configuration Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ZAEAutoscalerError):
    """
    Raised when a scaling policy or setting is missing or invalid.

    Fatal for the offending config entry only. The batch runner keeps
    evaluating the remaining tables.

    Attributes:
        field: Name of the offending field (if known)
        table_name: Table the config entry belongs to (if known)
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        table_name: str | None = None,
    ) -> None:
        self.field = field
        self.table_name = table_name
        context = []
        if table_name:
            context.append(f"table={table_name}")
        if field:
            context.append(f"field={field}")
        if context:
            message = f"{message} [{', '.join(context)}]"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Infrastructure Exceptions
# ---------------------------------------------------------------------------


class InfrastructureError(ZAEAutoscalerError):
    """
    Base exception for failures talking to DynamoDB or CloudWatch.

    Attributes:
        cause: The underlying exception (usually a botocore ClientError)
        table_name: The table being evaluated
        index_name: The index being evaluated (if applicable)
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        *,
        table_name: str | None = None,
        index_name: str | None = None,
    ) -> None:
        self.cause = cause
        self.table_name = table_name
        self.index_name = index_name
        super().__init__(self._format_message(message))

    def _format_message(self, message: str) -> str:
        parts = [message]
        context = []
        if self.table_name:
            context.append(f"table={self.table_name}")
        if self.index_name:
            context.append(f"index={self.index_name}")
        if context:
            parts.append(f"[{', '.join(context)}]")
        if self.cause is not None:
            parts.append(f"({self.cause})")
        return " ".join(parts)


class PolicyStoreError(InfrastructureError):
    """Raised when the scaling config table cannot be read or written."""

    pass


class SchemaFetchError(InfrastructureError):
    """Raised when a table description cannot be retrieved."""

    pass


class MetricFetchError(InfrastructureError):
    """Raised when a consumption statistics query fails."""

    pass


class ApplyError(InfrastructureError):
    """
    Raised when the throughput update call fails.

    The resource stays at its prior provisioned level. No retry is
    attempted by the engine.
    """

    pass
