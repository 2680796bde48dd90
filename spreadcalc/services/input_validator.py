"""
Input validation and type coercion.

This module provides the InputValidator class which matches untyped caller
inputs to a service's input definitions and coerces each value to the
definition's declared type before anything is written to a model.

Validation runs in two passes:
    1. Missing mandatory parameters are collected first. If there are any,
       a single error listing all of them is raised and no value is coerced.
    2. Every remaining value (supplied or defaulted) is coerced, and all
       failures are collected into one error report.

Example:
    validator = InputValidator()
    coerced = validator.validate(descriptor, {"Rate": "5%", "years": "30"})
    for item in coerced:
        print(item.definition.name, item.value)
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from numbers import Real
from typing import Any

from spreadcalc.exceptions.calculation_exceptions import ParameterValidationError
from spreadcalc.models.execution_models import ValidationIssueKind
from spreadcalc.models.parameter_models import (
    ClearCell,
    ParameterDefinition,
    ParameterType,
    ServiceDescriptor,
)

logger = logging.getLogger(__name__)

TRUTHY_TOKENS = frozenset(
    {"true", "t", "yes", "y", "1", "wahr", "ja", "j", "oui", "vrai", "si", "sí"}
)
FALSY_TOKENS = frozenset({"false", "f", "no", "n", "0", "falsch", "nein", "non", "faux"})

_PERCENT_PATTERN = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+))\s*%\s*$")
_JSON_SCALARS = (str, int, float, bool, type(None), list, dict)


@dataclass(frozen=True)
class CoercedInput:
    """
    A validated input ready to be written to the model.

    Attributes:
        definition: The input definition the value belongs to.
        value: Coerced value; None when the cell is to be cleared.
        clear: Whether the value comes from a ClearCell default.
        defaulted: Whether the value comes from a default.
    """

    definition: ParameterDefinition
    value: Any
    clear: bool = False
    defaulted: bool = False


class _InvalidValue(Exception):
    """Raised by the coercion helpers with a structured issue."""

    def __init__(self, issue: dict[str, Any]) -> None:
        super().__init__(issue["message"])
        self.issue = issue


def _received(value: Any) -> Any:
    return value if isinstance(value, _JSON_SCALARS) else repr(value)


def _issue(
    definition: ParameterDefinition,
    kind: ValidationIssueKind,
    message: str,
    **extra: Any,
) -> _InvalidValue:
    return _InvalidValue(
        {
            "parameter": definition.name,
            "title": definition.display_title,
            "type": kind.value,
            "message": message,
            **extra,
        }
    )


def _to_number(value: Any) -> float | None:
    """Parse a finite number; bools and non-numeric strings yield None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Real):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _tidy_number(number: float) -> int | float:
    return int(number) if number.is_integer() else number


def has_fractional_bounds(definition: ParameterDefinition) -> bool:
    """Whether the declared bounds both lie within [0, 1]."""
    return (
        definition.min is not None
        and definition.max is not None
        and definition.min >= 0
        and definition.max <= 1
    )


def coerce_number(value: Any, definition: ParameterDefinition) -> int | float:
    """
    Coerce a value to a number, applying the percentage heuristic.

    When the definition is flagged as a percentage, or its bounds are both
    within [0, 1], a trailing ``%`` is stripped and the number divided by
    100. Independently, a magnitude above the threshold (the declared max
    for fractional bounds, else 1) is taken to be a whole percentage and
    divided by 100. ``"5%"``, ``5`` and ``0.05`` all become ``0.05``.

    Raises:
        _InvalidValue: On type mismatch, bounds or allowed-value violations.
    """
    fractional = has_fractional_bounds(definition)
    number: float | None = None

    if definition.is_percentage or fractional:
        if isinstance(value, str):
            match = _PERCENT_PATTERN.match(value)
            if match:
                number = float(match.group(1)) / 100
                logger.debug("Converted percentage %r to %s for %s", value, number, definition.name)
        if number is None:
            number = _to_number(value)
        threshold = definition.max if fractional else 1
        if number is not None and abs(number) > threshold:
            logger.debug(
                "Value %s of %s exceeds %s, treating it as a whole percentage",
                number,
                definition.name,
                threshold,
            )
            number = number / 100
    else:
        number = _to_number(value)

    if number is None:
        raise _issue(
            definition,
            ValidationIssueKind.TYPE_MISMATCH,
            f"Expected a number, got: {value!r}",
            expected_type=ParameterType.NUMBER.value,
            received_value=_received(value),
        )

    if definition.min is not None and number < definition.min:
        raise _issue(
            definition,
            ValidationIssueKind.BELOW_MINIMUM,
            f"Value {number} is below minimum {definition.min}",
            min=definition.min,
            value=number,
        )

    if definition.max is not None and number > definition.max:
        raise _issue(
            definition,
            ValidationIssueKind.ABOVE_MAXIMUM,
            f"Value {number} is above maximum {definition.max}",
            max=definition.max,
            value=number,
        )

    if definition.allowed_values:
        allowed = [n for n in (_to_number(v) for v in definition.allowed_values) if n is not None]
        if allowed and number not in allowed:
            raise _issue(
                definition,
                ValidationIssueKind.INVALID_ENUM_VALUE,
                f"Value {number} is not allowed. Allowed values: "
                f"{', '.join(str(v) for v in definition.allowed_values)}",
                allowed_values=list(definition.allowed_values),
                received_value=_received(value),
            )

    return _tidy_number(number)


def coerce_boolean(value: Any, definition: ParameterDefinition) -> bool:
    """
    Coerce a value to a boolean.

    Native booleans pass through, the numbers 1 and 0 map to True and
    False, and strings are matched case-insensitively against a fixed set
    of English, German, French and Spanish tokens.

    Raises:
        _InvalidValue: For anything else.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, Real) and value in (0, 1):
        return value == 1
    if isinstance(value, str):
        token = value.strip().lower()
        if token in TRUTHY_TOKENS:
            return True
        if token in FALSY_TOKENS:
            return False

    raise _issue(
        definition,
        ValidationIssueKind.TYPE_MISMATCH,
        f"Expected a boolean, got: {value!r}. "
        "Accepted values: true/false, yes/no, 1/0, wahr/falsch, ja/nein",
        expected_type=ParameterType.BOOLEAN.value,
        received_value=_received(value),
    )


def coerce_string(value: Any, definition: ParameterDefinition) -> str:
    """
    Coerce a value to a trimmed string and check it against allowed values.

    Raises:
        _InvalidValue: If the value is not in the allowed set.
    """
    text = str(value).strip()

    if definition.allowed_values:
        if definition.allowed_values_case_sensitive:
            candidate = text
            allowed = {str(v).strip() for v in definition.allowed_values}
        else:
            candidate = text.casefold()
            allowed = {str(v).strip().casefold() for v in definition.allowed_values}

        if candidate not in allowed:
            raise _issue(
                definition,
                ValidationIssueKind.INVALID_ENUM_VALUE,
                f"Value {text!r} is not allowed. Allowed values: "
                f"{', '.join(str(v) for v in definition.allowed_values)}",
                allowed_values=list(definition.allowed_values),
                received_value=_received(value),
                case_sensitive=definition.allowed_values_case_sensitive,
            )

    return text


def coerce_array(value: Any, definition: ParameterDefinition) -> list[list[Any]]:
    """
    Coerce a value to a row-major 2-D list.

    A flat list becomes a single row; a JSON string encoding a list is
    decoded first.

    Raises:
        _InvalidValue: If the value is not list-like.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            pass

    if not isinstance(value, (list, tuple)):
        raise _issue(
            definition,
            ValidationIssueKind.TYPE_MISMATCH,
            f"Expected an array, got: {value!r}",
            expected_type=ParameterType.ARRAY.value,
            received_value=_received(value),
        )

    if value and all(isinstance(row, (list, tuple)) for row in value):
        return [list(row) for row in value]
    return [list(value)]


_COERCERS = {
    ParameterType.NUMBER: coerce_number,
    ParameterType.BOOLEAN: coerce_boolean,
    ParameterType.STRING: coerce_string,
    ParameterType.ARRAY: coerce_array,
}


class InputValidator:
    """
    Matches and coerces raw caller inputs against a service's input schema.

    Caller keys are resolved through the descriptor's ParameterIndex
    (exact name, normalized name, exact title, normalized title). Keys
    that match no definition are ignored.

    Example:
        validator = InputValidator()
        try:
            coerced = validator.validate(descriptor, {"rate": "5%"})
        except ParameterValidationError as e:
            print(e.to_dict())
    """

    def coerce(self, value: Any, definition: ParameterDefinition) -> Any:
        """
        Coerce one value according to its definition.

        Args:
            value: Raw caller value.
            definition: Target input definition.

        Returns:
            The coerced value.

        Raises:
            ParameterValidationError: If the value is invalid.
        """
        try:
            return _COERCERS[definition.type](value, definition)
        except _InvalidValue as e:
            raise ParameterValidationError(errors=[e.issue]) from None

    def _missing(
        self,
        descriptor: ServiceDescriptor,
        supplied: dict[str, Any],
    ) -> list[dict[str, str]]:
        return [
            {"name": definition.name, "title": definition.display_title}
            for definition in descriptor.inputs
            if definition.mandatory
            and definition.default is None
            and definition.name not in supplied
        ]

    def validate(
        self,
        descriptor: ServiceDescriptor,
        raw_inputs: dict[str, Any],
    ) -> list[CoercedInput]:
        """
        Validate and coerce caller inputs.

        Args:
            descriptor: The service whose inputs are validated.
            raw_inputs: Untyped caller inputs.

        Returns:
            Coerced inputs in definition order. Optional inputs that were
            omitted and have no default are not included.

        Raises:
            ParameterValidationError: With ``missing`` set when mandatory
                inputs are absent, otherwise with every coercion failure.
        """
        supplied = descriptor.input_index.resolve(raw_inputs or {})

        missing = self._missing(descriptor, supplied)
        if missing:
            raise ParameterValidationError(missing=missing)

        coerced: list[CoercedInput] = []
        errors: list[dict[str, Any]] = []

        for definition in descriptor.inputs:
            coercer = _COERCERS[definition.type]

            if definition.name in supplied:
                try:
                    value = coercer(supplied[definition.name], definition)
                except _InvalidValue as e:
                    errors.append(e.issue)
                    continue
                coerced.append(CoercedInput(definition, value))
                continue

            default = definition.default
            if default is None:
                continue

            if isinstance(default, ClearCell):
                coerced.append(CoercedInput(definition, None, clear=True, defaulted=True))
                continue

            try:
                value = coercer(default.value, definition)
            except _InvalidValue as e:
                logger.warning(
                    "Invalid default for %s of service %s: %s",
                    definition.name,
                    descriptor.service_id,
                    e.issue["message"],
                )
                if definition.mandatory:
                    errors.append(e.issue)
                continue
            coerced.append(CoercedInput(definition, value, defaulted=True))

        if errors:
            raise ParameterValidationError(errors=errors)

        return coerced
