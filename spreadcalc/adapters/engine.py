"""Calculation engine protocols.

The formula engine is an external collaborator. The core only relies on
the operations below; recalculation of dependent cells is expected to
happen inside the engine as a side effect of ``set_value``.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SheetHandle(Protocol):
    """A worksheet inside a loaded model. Rows and columns are 0-based."""

    @property
    def name(self) -> str: ...

    def get_value(self, row: int, col: int) -> Any:
        """Return the current value of one cell."""
        ...

    def set_value(self, row: int, col: int, value: Any) -> None:
        """Write one cell; ``None`` clears it."""
        ...

    def get_array(self, row: int, col: int, row_count: int, col_count: int) -> list[list[Any]]:
        """Return a row-major block of values."""
        ...


@runtime_checkable
class WorkbookHandle(Protocol):
    """A loaded, mutable spreadsheet model."""

    @property
    def sheet_names(self) -> list[str]: ...

    def active_sheet(self) -> SheetHandle:
        """Return the sheet that is active after loading."""
        ...

    def sheet_by_name(self, name: str) -> SheetHandle | None:
        """Return the named sheet, or None if the model has no such sheet."""
        ...


@runtime_checkable
class CalculationEngine(Protocol):
    """Builds workbook handles from serialized models."""

    def build(self, model_data: bytes) -> WorkbookHandle:
        """Load a serialized model without triggering a recalculation."""
        ...
