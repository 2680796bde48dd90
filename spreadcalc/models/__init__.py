"""
Data models for the calculation service.

Contains Pydantic models for the parameter schema and for execution
requests and responses.
"""

from spreadcalc.models.execution_models import (
    ExecutionError,
    ExecutionMetadata,
    ExecutionRequest,
    ExecutionResult,
    OutputValue,
    ResolvedInput,
    ValidationIssueKind,
    ValidationReport,
)
from spreadcalc.models.parameter_models import (
    CellAddress,
    ClearCell,
    LiteralDefault,
    ParameterDefinition,
    ParameterIndex,
    ParameterType,
    ServiceDescriptor,
    normalize_key,
)

__all__ = [
    "CellAddress",
    "ClearCell",
    "LiteralDefault",
    "ParameterDefinition",
    "ParameterIndex",
    "ParameterType",
    "ServiceDescriptor",
    "normalize_key",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionError",
    "ExecutionMetadata",
    "OutputValue",
    "ResolvedInput",
    "ValidationIssueKind",
    "ValidationReport",
]
