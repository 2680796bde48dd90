"""
Pydantic models for execution requests and responses.

Response models serialize with camelCase keys (``serviceId``,
``executionTime``, ``formatString``) so that the payload shape is the same
for the REST API, the MCP tools and direct Python callers.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel


class ValidationIssueKind(str, Enum):
    """Machine-readable kind of a per-parameter validation failure."""

    TYPE_MISMATCH = "type_mismatch"
    BELOW_MINIMUM = "below_minimum"
    ABOVE_MAXIMUM = "above_maximum"
    INVALID_ENUM_VALUE = "invalid_enum_value"


class _PayloadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class ExecutionRequest(BaseModel):
    """
    Request model for executing a service.

    Attributes:
        inputs: Untyped caller inputs keyed by parameter name or title.
        request_info: Request metadata forwarded to telemetry.
        nocache: Build a private model for this execution instead of
            using the workbook cache.
    """

    inputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Input values keyed by parameter name or title",
    )
    request_info: dict[str, Any] = Field(
        default_factory=dict,
        description="Request metadata recorded with the execution",
    )
    nocache: bool = Field(
        default=False,
        description="Bypass the workbook cache for this execution",
    )


class ResolvedInput(_PayloadModel):
    """An input value as it was written to the model."""

    name: str
    title: str
    value: Any = None


class OutputValue(_PayloadModel):
    """
    An output value read from the model.

    ``value`` is a scalar for single-cell outputs and a row-major list of
    rows for range outputs.
    """

    name: str
    title: str
    value: Any = None
    format_string: str | None = None

    @model_serializer(mode="wrap")
    def _omit_missing_format(self, handler):
        data = handler(self)
        if self.format_string is None:
            data.pop("formatString", None)
            data.pop("format_string", None)
        return data


class ExecutionMetadata(_PayloadModel):
    """Timing and cache information about one execution."""

    execution_time: float = Field(ge=0, description="Execution time in milliseconds")
    cached: bool = Field(description="Whether a cached compiled model was used")
    timestamp: datetime = Field(description="Completion time (UTC)")


class ExecutionResult(_PayloadModel):
    """
    Successful execution payload.

    Attributes:
        service_id: Executed service.
        service_name: Display name of the service.
        inputs: Echo of every value written to the model.
        outputs: Output values in definition order.
        metadata: Timing and cache information.
    """

    service_id: str
    service_name: str
    inputs: list[ResolvedInput] = Field(default_factory=list)
    outputs: list[OutputValue] = Field(default_factory=list)
    metadata: ExecutionMetadata


class ExecutionError(_PayloadModel):
    """
    Failed execution payload.

    The presence of ``error`` distinguishes it from an ExecutionResult.
    """

    error: str = Field(description="Error kind, e.g. VALIDATION_ERROR")
    message: str = Field(description="Human-readable error description")
    details: dict[str, Any] | None = Field(default=None, description="Additional error context")

    @model_serializer(mode="wrap")
    def _omit_missing_details(self, handler):
        data = handler(self)
        if self.details is None:
            data.pop("details", None)
        return data


class ValidationReport(_PayloadModel):
    """
    Result of validating inputs without executing the service.

    Attributes:
        valid: Whether the inputs passed validation.
        inputs: Coerced inputs that would be written, when valid.
        error: The validation error, when invalid.
    """

    valid: bool
    inputs: list[ResolvedInput] = Field(default_factory=list)
    error: ExecutionError | None = None
