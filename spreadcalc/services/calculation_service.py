"""
Core calculation service layer.

This module provides the CalculationService class which encapsulates the
execution pipeline and serves as the single entry point for both FastAPI
and MCP interfaces:

    validate inputs -> get or build the compiled model -> write inputs and
    read outputs -> build the response (and record telemetry)

``execute`` never raises: every failure is returned as an ExecutionError
payload with ``error`` set to ``VALIDATION_ERROR`` or ``CALCULATION_ERROR``.

Example:
    service = CalculationService()

    result = service.execute(descriptor, {"rate": "5%"}, {"method": "POST"})
    if isinstance(result, ExecutionError):
        print(result.error, result.message)
    else:
        print(result.outputs)
"""

import contextlib
import logging
import time
from typing import Any

from spreadcalc.adapters.openpyxl_adapter import OpenpyxlEngine
from spreadcalc.config import Settings
from spreadcalc.exceptions.calculation_exceptions import (
    CalculationError,
    ParameterValidationError,
    SpreadCalcError,
)
from spreadcalc.models.execution_models import (
    ExecutionError,
    ExecutionResult,
    OutputValue,
    ResolvedInput,
    ValidationReport,
)
from spreadcalc.models.parameter_models import ServiceDescriptor
from spreadcalc.services.calculation_orchestrator import CalculationOrchestrator
from spreadcalc.services.input_validator import CoercedInput, InputValidator
from spreadcalc.services.result_builder import ResultBuilder
from spreadcalc.services.telemetry import (
    InMemoryTelemetrySink,
    JsonLinesTelemetrySink,
    TelemetryRecorder,
    TelemetrySink,
)
from spreadcalc.services.workbook_cache import WorkbookCache

logger = logging.getLogger(__name__)


class CalculationService:
    """
    Executes spreadsheet services.

    The service is transport-agnostic and returns Pydantic models that
    serialize to the documented payload shapes.

    Attributes:
        cache: WorkbookCache of compiled models keyed by service id.
        validator: InputValidator for caller inputs.
        orchestrator: CalculationOrchestrator writing and reading cells.
        result_builder: ResultBuilder shaping payloads and telemetry.
        serialize_per_service: Hold a per-service lock around each
            calculation, so that at most one calculation runs on a cached
            model at a time. When False, concurrent executions of the same
            service may observe each other's inputs.
        invalidate_on_error: Evict the cached model after a calculation
            error. Inputs written before the failure are not rolled back,
            so without eviction they stay visible to the next request.
    """

    def __init__(
        self,
        cache: WorkbookCache | None = None,
        validator: InputValidator | None = None,
        orchestrator: CalculationOrchestrator | None = None,
        result_builder: ResultBuilder | None = None,
        serialize_per_service: bool = True,
        invalidate_on_error: bool = True,
    ) -> None:
        """
        Initialize the CalculationService.

        Args:
            cache: Optional WorkbookCache. If None, creates one backed by
                an OpenpyxlEngine with the default TTL.
            validator: Optional InputValidator.
            orchestrator: Optional CalculationOrchestrator.
            result_builder: Optional ResultBuilder. If None, telemetry is
                not delivered anywhere.
            serialize_per_service: See class attributes.
            invalidate_on_error: See class attributes.
        """
        self.cache = cache if cache is not None else WorkbookCache(OpenpyxlEngine())
        self.validator = validator if validator is not None else InputValidator()
        self.orchestrator = orchestrator if orchestrator is not None else CalculationOrchestrator()
        self.result_builder = result_builder if result_builder is not None else ResultBuilder()
        self.serialize_per_service = serialize_per_service
        self.invalidate_on_error = invalidate_on_error

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sinks: list[TelemetrySink] | None = None,
    ) -> "CalculationService":
        """
        Build a service configured from Settings.

        Args:
            settings: Application settings.
            sinks: Telemetry sinks. If None, an InMemoryTelemetrySink is
                used, plus a JsonLinesTelemetrySink when file telemetry
                is enabled.
        """
        if sinks is None:
            sinks = [InMemoryTelemetrySink(settings.RECENT_LOGS_MAX)]
            if settings.TELEMETRY_FILE_ENABLED:
                sinks.append(JsonLinesTelemetrySink(settings.get_logs_path()))

        return cls(
            cache=WorkbookCache(
                OpenpyxlEngine(),
                ttl_seconds=settings.WORKBOOK_CACHE_TTL_SECONDS,
                max_entries=settings.WORKBOOK_CACHE_MAX_ENTRIES,
            ),
            result_builder=ResultBuilder(TelemetryRecorder(sinks)),
            serialize_per_service=settings.SERIALIZE_PER_SERVICE,
            invalidate_on_error=settings.INVALIDATE_ON_ERROR,
        )

    def _guard(self, service_id: str) -> contextlib.AbstractContextManager:
        if self.serialize_per_service:
            return self.cache.lock_for(service_id)
        return contextlib.nullcontext()

    def _run_cached(
        self,
        service: ServiceDescriptor,
        coerced: list[CoercedInput],
    ) -> tuple[list[ResolvedInput], list[OutputValue], bool]:
        service_id = service.service_id
        with self._guard(service_id):
            try:
                handle, cached = self.cache.get(service_id, service.model_data)
                resolved, outputs = self.orchestrator.run(service, coerced, handle)
            except Exception:
                # Evict while still holding the lock; waiters must not see partial writes.
                if self.invalidate_on_error:
                    self.cache.clear(service_id)
                raise
        return resolved, outputs, cached

    def _run_private(
        self,
        service: ServiceDescriptor,
        coerced: list[CoercedInput],
    ) -> tuple[list[ResolvedInput], list[OutputValue], bool]:
        logger.debug("Building a private model for %s", service.service_id)
        handle = self.cache.engine.build(service.model_data)
        resolved, outputs = self.orchestrator.run(service, coerced, handle)
        return resolved, outputs, False

    def execute(
        self,
        service: ServiceDescriptor,
        inputs: dict[str, Any] | None,
        request_info: dict[str, Any] | None = None,
        nocache: bool = False,
    ) -> ExecutionResult | ExecutionError:
        """
        Execute a service with caller inputs.

        Validation failures return before any cell is written. A failure
        while loading the model, writing inputs or reading outputs returns
        a CALCULATION_ERROR.

        The cached compiled model is used unless the service was published
        with ``use_caching=False`` or the caller passes ``nocache=True``; in
        both cases a private model is built and the cache is not touched.

        Args:
            service: The service to execute.
            inputs: Untyped caller inputs keyed by parameter name or title.
            request_info: Request metadata recorded with the execution.
            nocache: Bypass the workbook cache for this execution.

        Returns:
            ExecutionResult on success, ExecutionError otherwise.
        """
        started_at = time.perf_counter()
        service_id = service.service_id

        try:
            coerced = self.validator.validate(service, inputs or {})
        except ParameterValidationError as e:
            logger.info("Rejected inputs for %s: %s", service_id, e.message)
            return self.result_builder.failure(service_id, e, started_at, request_info)

        run = self._run_cached if service.use_caching and not nocache else self._run_private
        try:
            resolved, outputs, cached = run(service, coerced)
        except SpreadCalcError as e:
            error = e if isinstance(e, CalculationError) else CalculationError(e.message, service_id, e.details)
            return self.result_builder.failure(service_id, error, started_at, request_info)
        except Exception as e:
            logger.exception("Unexpected failure executing %s", service_id)
            error = CalculationError(reason=str(e) or type(e).__name__, service_id=service_id)
            return self.result_builder.failure(service_id, error, started_at, request_info)

        return self.result_builder.success(
            service,
            resolved,
            outputs,
            cached,
            started_at,
            request_info,
        )

    def validate(
        self,
        service: ServiceDescriptor,
        inputs: dict[str, Any] | None,
    ) -> ValidationReport:
        """
        Validate inputs without touching the model or recording telemetry.

        Args:
            service: The service whose schema is used.
            inputs: Untyped caller inputs.

        Returns:
            ValidationReport with the coerced inputs or the error.
        """
        try:
            coerced = self.validator.validate(service, inputs or {})
        except ParameterValidationError as e:
            return ValidationReport(valid=False, error=ExecutionError(**e.to_dict()))

        return ValidationReport(
            valid=True,
            inputs=[
                ResolvedInput(
                    name=item.definition.name,
                    title=item.definition.display_title,
                    value=item.value,
                )
                for item in coerced
            ],
        )

    def invalidate(self, service_id: str | None = None) -> int:
        """
        Drop cached models after a service's model changed.

        Args:
            service_id: Service to evict, or None for every service.

        Returns:
            Number of evicted entries.
        """
        return self.cache.clear(service_id)
