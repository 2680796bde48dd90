"""
Calamine adapter for inspecting spreadsheet models.

This module provides the CalamineModelInspector class that wraps
python-calamine to read a model's sheet names and used bounds quickly,
without building a full mutable workbook. It is used when a service is
published, to check that every parameter address points at an existing
sheet and that every output lies inside the sheet's used area.

Example:
    inspector = CalamineModelInspector()
    bounds = inspector.sheet_bounds(model_bytes)
    # {"Inputs": (12, 4), "Results": (30, 8)}

    inspector.check_descriptor(descriptor)  # raises on mismatch
"""

import logging
from io import BytesIO

from python_calamine import CalamineWorkbook

from spreadcalc.adapters.openpyxl_adapter import opening_sheet_name
from spreadcalc.exceptions.calculation_exceptions import CalculationError, InvalidServiceDefinitionError
from spreadcalc.models.parameter_models import ParameterDefinition, ServiceDescriptor

logger = logging.getLogger(__name__)


class CalamineModelInspector:
    """
    Reads sheet metadata from serialized models with python-calamine.

    Example:
        inspector = CalamineModelInspector()
        problems = inspector.find_problems(descriptor)
    """

    def _open_workbook(self, service_id: str, model_data: bytes) -> CalamineWorkbook:
        """
        Open a serialized model using calamine.

        Raises:
            InvalidServiceDefinitionError: If the model cannot be parsed.
        """
        if not model_data:
            raise InvalidServiceDefinitionError(service_id, ["Spreadsheet model is empty"])

        try:
            return CalamineWorkbook.from_filelike(BytesIO(model_data))
        except Exception as e:
            raise InvalidServiceDefinitionError(
                service_id,
                [f"Spreadsheet model cannot be read: {e}"],
            ) from e

    def sheet_bounds(self, model_data: bytes, service_id: str = "") -> dict[str, tuple[int, int]]:
        """
        Get the used row and column count of every sheet.

        Args:
            model_data: Serialized model.
            service_id: Service id used in error reports.

        Returns:
            Dictionary of sheet name to ``(row_count, column_count)``,
            in workbook order.
        """
        workbook = self._open_workbook(service_id, model_data)

        bounds: dict[str, tuple[int, int]] = {}
        for name in workbook.sheet_names:
            data = workbook.get_sheet_by_name(name).to_python(skip_empty_area=False)
            row_count = len(data)
            column_count = max((len(row) for row in data), default=0)
            bounds[name] = (row_count, column_count)
        return bounds

    def _check_definition(
        self,
        definition: ParameterDefinition,
        bounds: dict[str, tuple[int, int]],
        default_sheet: str | None,
        check_bounds: bool,
    ) -> list[str]:
        address = definition.address
        sheet = address.sheet or default_sheet
        if sheet is None or sheet not in bounds:
            return [f"{definition.name}: sheet not found: {address.sheet}"]

        if not check_bounds:
            return []

        row_count, column_count = bounds[sheet]
        last_row = address.row + address.row_count
        last_col = address.col + address.col_count
        if last_row > row_count or last_col > column_count:
            return [
                f"{definition.name}: {address.a1} lies outside the used area of "
                f"'{sheet}' ({row_count} rows x {column_count} columns)"
            ]
        return []

    def _opening_sheet(self, descriptor: ServiceDescriptor) -> str | None:
        try:
            return opening_sheet_name(descriptor.model_data)
        except CalculationError as e:
            raise InvalidServiceDefinitionError(descriptor.service_id, [e.message]) from e

    def find_problems(self, descriptor: ServiceDescriptor) -> list[str]:
        """
        Compare a descriptor's addresses with its model.

        Inputs only need an existing sheet, since input cells are often
        empty in the published model. Outputs must also lie within the
        used area of their sheet. Addresses without a sheet are checked
        against the sheet the model opens on, which is where they are
        written and read at execution time.

        Args:
            descriptor: The service to check.

        Returns:
            One message per problem; empty when the descriptor is consistent.
        """
        bounds = self.sheet_bounds(descriptor.model_data, descriptor.service_id)
        default_sheet = self._opening_sheet(descriptor)

        problems: list[str] = []
        for definition in descriptor.inputs:
            problems.extend(self._check_definition(definition, bounds, default_sheet, False))
        for definition in descriptor.outputs:
            problems.extend(self._check_definition(definition, bounds, default_sheet, True))
        return problems

    def check_descriptor(self, descriptor: ServiceDescriptor) -> None:
        """
        Raise if a descriptor does not match its model.

        Raises:
            InvalidServiceDefinitionError: Listing every problem found.
        """
        problems = self.find_problems(descriptor)
        if problems:
            logger.warning("Service %s failed model inspection: %s", descriptor.service_id, problems)
            raise InvalidServiceDefinitionError(descriptor.service_id, problems)
