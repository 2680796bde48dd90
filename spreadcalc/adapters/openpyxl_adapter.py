"""
Openpyxl adapter for spreadsheet model handles.

This module provides the OpenpyxlEngine class, a CalculationEngine that
loads ``.xlsx`` models with openpyxl and exposes them through the
WorkbookHandle / SheetHandle protocols used by the orchestrator.

Openpyxl reads the values Excel cached when the model was last saved and
does not evaluate formulas itself: writes are stored, and dependent
formula cells keep their cached values. Use it for models whose outputs
do not depend on formulas (lookups, pass-through services, tests), or
plug in a recalculating engine implementing the same protocol.

Example:
    engine = OpenpyxlEngine()
    handle = engine.build(Path("model.xlsx").read_bytes())

    sheet = handle.sheet_by_name("Inputs")
    sheet.set_value(0, 1, 0.05)
    print(sheet.get_array(0, 0, 2, 2))
"""

import logging
from datetime import datetime
from io import BytesIO
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from spreadcalc.exceptions.calculation_exceptions import CalculationError

logger = logging.getLogger(__name__)


def _normalize_cell_value(value: Any) -> Any:
    """
    Normalize a cell value from openpyxl to Python types.

    Integral floats become ints; unknown types are stringified.

    Args:
        value: Raw cell value from openpyxl.

    Returns:
        Normalized Python value.
    """
    if value is None:
        return None

    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return value

    if isinstance(value, (str, int, bool, datetime)):
        return value

    return str(value)


class OpenpyxlSheet:
    """SheetHandle over an openpyxl worksheet."""

    def __init__(self, worksheet: Worksheet) -> None:
        self._worksheet = worksheet

    @property
    def name(self) -> str:
        return self._worksheet.title

    @property
    def dimensions(self) -> tuple[int, int]:
        """Used rows and columns of the sheet."""
        return self._worksheet.max_row, self._worksheet.max_column

    def get_value(self, row: int, col: int) -> Any:
        return _normalize_cell_value(self._worksheet.cell(row=row + 1, column=col + 1).value)

    def set_value(self, row: int, col: int, value: Any) -> None:
        self._worksheet.cell(row=row + 1, column=col + 1).value = value

    def get_array(self, row: int, col: int, row_count: int, col_count: int) -> list[list[Any]]:
        return [
            [self.get_value(r, c) for c in range(col, col + col_count)]
            for r in range(row, row + row_count)
        ]


class OpenpyxlWorkbookHandle:
    """WorkbookHandle over an openpyxl workbook."""

    def __init__(self, workbook: Workbook) -> None:
        self._workbook = workbook

    @property
    def sheet_names(self) -> list[str]:
        return list(self._workbook.sheetnames)

    def active_sheet(self) -> OpenpyxlSheet:
        return OpenpyxlSheet(self._workbook.active)

    def sheet_by_name(self, name: str) -> OpenpyxlSheet | None:
        if name not in self._workbook.sheetnames:
            return None
        return OpenpyxlSheet(self._workbook[name])


class OpenpyxlEngine:
    """CalculationEngine that builds handles from ``.xlsx`` bytes."""

    def build(self, model_data: bytes) -> OpenpyxlWorkbookHandle:
        """
        Load a serialized model.

        Args:
            model_data: Contents of an ``.xlsx`` file.

        Returns:
            OpenpyxlWorkbookHandle for the loaded model.

        Raises:
            CalculationError: If the model cannot be parsed.
        """
        if not model_data:
            raise CalculationError(reason="Spreadsheet model is empty")

        try:
            workbook = load_workbook(BytesIO(model_data), data_only=True)
        except Exception as e:
            raise CalculationError(reason=f"Invalid spreadsheet model - {e}") from e

        logger.debug("Loaded model with sheets %s", workbook.sheetnames)
        return OpenpyxlWorkbookHandle(workbook)


def opening_sheet_name(model_data: bytes) -> str | None:
    """
    Get the name of the sheet a model opens on, without loading cell data.

    This is the sheet ``OpenpyxlEngine.build(...).active_sheet()`` returns.

    Raises:
        CalculationError: If the model cannot be parsed.
    """
    try:
        workbook = load_workbook(BytesIO(model_data), read_only=True)
    except Exception as e:
        raise CalculationError(reason=f"Invalid spreadsheet model - {e}") from e

    try:
        active = workbook.active
        return active.title if active is not None else None
    finally:
        workbook.close()
