"""
Response shaping and execution telemetry.

The ResultBuilder assembles the success payload (echoed inputs, outputs,
metadata) or the error payload for an execution, and records every
outcome with the TelemetryRecorder.
"""

import time
from datetime import datetime, timezone
from typing import Any

from spreadcalc.exceptions.calculation_exceptions import SpreadCalcError
from spreadcalc.models.execution_models import (
    ExecutionError,
    ExecutionMetadata,
    ExecutionResult,
    OutputValue,
    ResolvedInput,
)
from spreadcalc.models.parameter_models import ServiceDescriptor
from spreadcalc.services.telemetry import TelemetryRecorder


def _elapsed_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000, 2)


class ResultBuilder:
    """
    Builds execution payloads and records telemetry.

    Attributes:
        recorder: Destination of one record per execution.
    """

    def __init__(self, recorder: TelemetryRecorder | None = None) -> None:
        self.recorder = recorder or TelemetryRecorder()

    def _record(
        self,
        service_id: str,
        status: str,
        execution_time: float,
        request_info: dict[str, Any] | None,
        **fields: Any,
    ) -> None:
        entry = {
            **(request_info or {}),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "serviceId": service_id,
            "status": status,
            "executionTime": execution_time,
            **fields,
        }
        self.recorder.record(entry)

    def success(
        self,
        descriptor: ServiceDescriptor,
        inputs: list[ResolvedInput],
        outputs: list[OutputValue],
        cached: bool,
        started_at: float,
        request_info: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """
        Build the success payload.

        Args:
            descriptor: The executed service.
            inputs: Values written to the model.
            outputs: Values read from the model.
            cached: Whether a cached compiled model was used.
            started_at: ``time.perf_counter()`` value at request start.
            request_info: Request metadata for telemetry.
        """
        execution_time = _elapsed_ms(started_at)
        result = ExecutionResult(
            service_id=descriptor.service_id,
            service_name=descriptor.display_name,
            inputs=inputs,
            outputs=outputs,
            metadata=ExecutionMetadata(
                execution_time=execution_time,
                cached=cached,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        self._record(
            descriptor.service_id,
            "success",
            execution_time,
            request_info,
            cached=cached,
            outputCount=len(outputs),
        )
        return result

    def failure(
        self,
        service_id: str,
        error: SpreadCalcError,
        started_at: float,
        request_info: dict[str, Any] | None = None,
    ) -> ExecutionError:
        """
        Build the error payload.

        Args:
            service_id: The executed service.
            error: The failure, converted with its ``to_dict()``.
            started_at: ``time.perf_counter()`` value at request start.
            request_info: Request metadata for telemetry.
        """
        execution_time = _elapsed_ms(started_at)
        payload = ExecutionError(**error.to_dict())
        self._record(
            service_id,
            "error",
            execution_time,
            request_info,
            errorCode=error.error_code,
            errorMessage=error.message,
        )
        return payload
