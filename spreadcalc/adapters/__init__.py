"""
Adapters between the calculation core and spreadsheet engines.

Implements the adapter pattern for different spreadsheet libraries:
- OpenpyxlEngine: loads .xlsx models into mutable workbook handles
- CalamineModelInspector: fast read-only inspection of models (python-calamine)
"""

from spreadcalc.adapters.calamine_adapter import CalamineModelInspector
from spreadcalc.adapters.engine import CalculationEngine, SheetHandle, WorkbookHandle
from spreadcalc.adapters.openpyxl_adapter import OpenpyxlEngine

__all__ = [
    "CalculationEngine",
    "WorkbookHandle",
    "SheetHandle",
    "OpenpyxlEngine",
    "CalamineModelInspector",
]
