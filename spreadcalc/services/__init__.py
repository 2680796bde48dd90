"""
Service layer for spreadsheet calculation services.

Contains the core business logic, decoupled from the REST and MCP
transports.
"""

from spreadcalc.services.calculation_orchestrator import CalculationOrchestrator
from spreadcalc.services.calculation_service import CalculationService
from spreadcalc.services.input_validator import CoercedInput, InputValidator
from spreadcalc.services.result_builder import ResultBuilder
from spreadcalc.services.service_store import FileServiceStore, build_descriptor
from spreadcalc.services.telemetry import (
    InMemoryTelemetrySink,
    JsonLinesTelemetrySink,
    TelemetryRecorder,
    TelemetrySink,
)
from spreadcalc.services.workbook_cache import WorkbookCache

__all__ = [
    "CalculationService",
    "CalculationOrchestrator",
    "CoercedInput",
    "InputValidator",
    "ResultBuilder",
    "FileServiceStore",
    "build_descriptor",
    "InMemoryTelemetrySink",
    "JsonLinesTelemetrySink",
    "TelemetryRecorder",
    "TelemetrySink",
    "WorkbookCache",
]
