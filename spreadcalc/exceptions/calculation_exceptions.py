"""
Custom exceptions for spreadsheet calculation services.

This module defines a hierarchy of exceptions for the error conditions that
can occur while validating inputs, loading models and manipulating cells.
All exceptions inherit from SpreadCalcError so that transports can convert
them to a structured error payload with a single except clause.

Example:
    try:
        validator.validate(service, inputs)
    except ParameterValidationError as e:
        logger.warning("Rejected inputs: %s", e.details)
    except SpreadCalcError as e:
        logger.error("General error: %s", e)
"""

from typing import Any


class SpreadCalcError(Exception):
    """
    Base exception for all calculation service errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code for API responses.
        details: Optional additional context about the error.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "SPREADCALC_ERROR",
        details: dict | None = None,
    ) -> None:
        """
        Initialize the SpreadCalcError.

        Args:
            message: Human-readable error description.
            error_code: Machine-readable error code for API responses.
            details: Optional additional context about the error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """
        Convert the exception to the error payload shape.

        Returns:
            Dictionary with ``error``, ``message`` and, when present, ``details``.
        """
        payload: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ParameterValidationError(SpreadCalcError):
    """
    Raised when caller inputs do not satisfy the parameter schema.

    Either ``missing`` is populated (mandatory parameters without a value,
    reported before anything else is checked) or ``errors`` holds one entry
    per failed coercion.

    Attributes:
        missing: Missing mandatory parameters as ``{"name", "title"}`` dicts.
        errors: Per-parameter failures, each tagged with a ``type`` kind.
    """

    def __init__(
        self,
        missing: list[dict] | None = None,
        errors: list[dict] | None = None,
    ) -> None:
        self.missing = missing or []
        self.errors = errors or []

        if self.missing:
            titles = ", ".join(p["title"] for p in self.missing)
            message = f"Missing required parameters: {titles}"
            details = {"missing": self.missing}
        else:
            message = f"{len(self.errors)} parameter(s) failed validation"
            details = {"errors": self.errors}

        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details,
        )


class CalculationError(SpreadCalcError):
    """
    Raised when writing inputs to or reading outputs from a model fails.

    This wraps any exception raised by the calculation engine so that a
    fault inside the model never propagates past the orchestrator.

    Attributes:
        service_id: Service whose model was being manipulated.
        reason: Underlying error message.
    """

    def __init__(
        self,
        reason: str,
        service_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.service_id = service_id
        self.reason = reason
        super().__init__(
            message=reason,
            error_code="CALCULATION_ERROR",
            details=details,
        )


class SheetNotFoundError(CalculationError):
    """
    Raised when a parameter address names a sheet the model does not have.

    Attributes:
        sheet_name: Name of the sheet that was not found.
        available_sheets: List of sheets available in the model.
    """

    def __init__(
        self,
        sheet_name: str,
        available_sheets: list[str] | None = None,
        service_id: str | None = None,
    ) -> None:
        self.sheet_name = sheet_name
        self.available_sheets = available_sheets or []

        message = f"Sheet not found: {sheet_name}"
        if self.available_sheets:
            message += f". Available sheets: {', '.join(self.available_sheets)}"

        super().__init__(
            reason=message,
            service_id=service_id,
            details={
                "sheet_name": sheet_name,
                "available_sheets": self.available_sheets,
            },
        )


class CellAddressError(SpreadCalcError):
    """
    Raised when a cell address cannot be parsed.

    Attributes:
        address: The invalid address string.
        reason: Specific reason why the address is invalid.
    """

    def __init__(
        self,
        address: str,
        reason: str | None = None,
    ) -> None:
        self.address = address
        self.reason = reason

        message = f"Invalid cell address: {address}"
        if reason:
            message += f" - {reason}"

        super().__init__(
            message=message,
            error_code="INVALID_CELL_ADDRESS",
            details={
                "address": address,
                "reason": reason,
            },
        )


class InvalidServiceDefinitionError(SpreadCalcError):
    """
    Raised when a service definition does not match its spreadsheet model.

    Attributes:
        service_id: The service being published.
        problems: One message per inconsistency found.
    """

    def __init__(
        self,
        service_id: str,
        problems: list[str],
    ) -> None:
        self.service_id = service_id
        self.problems = problems

        super().__init__(
            message=f"Invalid service definition for {service_id}: {'; '.join(problems)}",
            error_code="INVALID_SERVICE_DEFINITION",
            details={
                "service_id": service_id,
                "problems": problems,
            },
        )


class ServiceNotFoundError(SpreadCalcError):
    """
    Raised when no service is stored under the requested id.

    Attributes:
        service_id: The id that was looked up.
    """

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(
            message=f"Service '{service_id}' not found",
            error_code="NOT_FOUND",
            details={"service_id": service_id},
        )
