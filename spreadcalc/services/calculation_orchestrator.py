"""
Calculation orchestration.

The CalculationOrchestrator writes coerced inputs into a workbook handle
and reads the output cells back. Dependent formula cells are recalculated
by the engine as a side effect of each write; no explicit recalculation
is requested. Any failure while manipulating the model is reported as a
CalculationError and never propagates in any other form.
"""

import logging
from typing import Any

from spreadcalc.adapters.engine import SheetHandle, WorkbookHandle
from spreadcalc.exceptions.calculation_exceptions import CalculationError, SheetNotFoundError
from spreadcalc.models.execution_models import OutputValue, ResolvedInput
from spreadcalc.models.parameter_models import CellAddress, ServiceDescriptor
from spreadcalc.services.input_validator import CoercedInput

logger = logging.getLogger(__name__)


class _SheetCursor:
    """
    Tracks the current sheet and switches it by name when needed.

    Addresses without a sheet name always resolve to the sheet the
    workbook opened on, not to the sheet of the previous address.
    """

    def __init__(self, workbook: WorkbookHandle, service_id: str) -> None:
        self._workbook = workbook
        self._service_id = service_id
        self._opening: SheetHandle = workbook.active_sheet()
        self.sheet: SheetHandle = self._opening

    def move_to(self, address: CellAddress) -> SheetHandle:
        if address.sheet is None:
            self.sheet = self._opening
            return self.sheet
        if address.sheet == self.sheet.name:
            return self.sheet

        sheet = self._workbook.sheet_by_name(address.sheet)
        if sheet is None:
            raise SheetNotFoundError(
                sheet_name=address.sheet,
                available_sheets=list(self._workbook.sheet_names),
                service_id=self._service_id,
            )
        self.sheet = sheet
        return sheet


class CalculationOrchestrator:
    """
    Applies inputs to a compiled model and reads outputs back.

    Example:
        orchestrator = CalculationOrchestrator()
        inputs, outputs = orchestrator.run(descriptor, coerced, handle)
    """

    def _write(self, sheet: SheetHandle, item: CoercedInput) -> None:
        address = item.definition.address
        value = item.value

        if isinstance(value, list):
            for row_offset, row in enumerate(value):
                for col_offset, cell_value in enumerate(row):
                    sheet.set_value(address.row + row_offset, address.col + col_offset, cell_value)
            return

        sheet.set_value(address.row, address.col, value)

    def _read(self, sheet: SheetHandle, address: CellAddress) -> Any:
        if address.is_range:
            return sheet.get_array(address.row, address.col, address.row_count, address.col_count)
        return sheet.get_value(address.row, address.col)

    def run(
        self,
        descriptor: ServiceDescriptor,
        coerced_inputs: list[CoercedInput],
        workbook: WorkbookHandle,
    ) -> tuple[list[ResolvedInput], list[OutputValue]]:
        """
        Write inputs, then read outputs.

        Args:
            descriptor: The executed service.
            coerced_inputs: Validated inputs in definition order.
            workbook: Compiled model to manipulate.

        Returns:
            Tuple of (echoed inputs, outputs in definition order).

        Raises:
            CalculationError: If a sheet is missing or the engine fails.
                Inputs written before the failure stay in the model.
        """
        try:
            cursor = _SheetCursor(workbook, descriptor.service_id)

            resolved: list[ResolvedInput] = []
            for item in coerced_inputs:
                sheet = cursor.move_to(item.definition.address)
                self._write(sheet, item)
                resolved.append(
                    ResolvedInput(
                        name=item.definition.name,
                        title=item.definition.display_title,
                        value=item.value,
                    )
                )

            outputs: list[OutputValue] = []
            for definition in descriptor.outputs:
                sheet = cursor.move_to(definition.address)
                outputs.append(
                    OutputValue(
                        name=definition.name,
                        title=definition.display_title,
                        value=self._read(sheet, definition.address),
                        format_string=definition.format_string,
                    )
                )

            return resolved, outputs

        except CalculationError:
            raise
        except Exception as e:
            logger.exception("Calculation failed for %s", descriptor.service_id)
            raise CalculationError(
                reason=str(e) or type(e).__name__,
                service_id=descriptor.service_id,
            ) from e
