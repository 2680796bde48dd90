"""
spreadcalc: spreadsheets exposed as callable calculation services.

A caller supplies named input values; the service writes them into the
designated cells of a published spreadsheet model, lets the engine
recalculate, and returns the designated output cells as structured values.

Architecture:
    - Service Layer pattern: validation, workbook caching, orchestration and
      result building are decoupled from transport
    - Engine adapters: openpyxl for model handles, python-calamine for
      inspecting models at publish time
    - Dual protocol: the same service exposed via REST (FastAPI) and MCP
"""

__version__ = "0.1.0"
