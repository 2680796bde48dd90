"""
Custom exceptions for the calculation service.

Provides type-safe, descriptive exceptions for error handling throughout
the application.
"""

from spreadcalc.exceptions.calculation_exceptions import (
    CalculationError,
    CellAddressError,
    InvalidServiceDefinitionError,
    ParameterValidationError,
    ServiceNotFoundError,
    SheetNotFoundError,
    SpreadCalcError,
)

__all__ = [
    "SpreadCalcError",
    "ParameterValidationError",
    "CalculationError",
    "SheetNotFoundError",
    "CellAddressError",
    "InvalidServiceDefinitionError",
    "ServiceNotFoundError",
]
