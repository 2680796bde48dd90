"""
Test fixtures and utilities for the calculation service tests.

This module provides shared fixtures including temporary directories,
sample spreadsheet models, service descriptors and a small recalculating
engine that evaluates Python formulas on read.
"""

import copy
import tempfile
from collections.abc import Callable, Generator
from io import BytesIO
from pathlib import Path
from typing import Any

import pytest
import xlsxwriter

from spreadcalc.models.parameter_models import ServiceDescriptor
from spreadcalc.services.calculation_orchestrator import CalculationOrchestrator
from spreadcalc.services.calculation_service import CalculationService
from spreadcalc.services.input_validator import InputValidator
from spreadcalc.services.result_builder import ResultBuilder
from spreadcalc.services.telemetry import InMemoryTelemetrySink, TelemetryRecorder
from spreadcalc.services.workbook_cache import WorkbookCache


class Formula:
    """A formula cell: ``fn(lookup)`` where ``lookup(sheet, row, col)`` reads a cell."""

    def __init__(self, fn: Callable[[Callable[[str, int, int], Any]], Any]) -> None:
        self.fn = fn


class FakeSheet:
    """SheetHandle over a dict of cells; formulas are evaluated on read."""

    def __init__(self, workbook: "FakeWorkbook", name: str) -> None:
        self.workbook = workbook
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def get_value(self, row: int, col: int) -> Any:
        return self.workbook.lookup(self._name, row, col)

    def set_value(self, row: int, col: int, value: Any) -> None:
        if (self._name, row, col) in self.workbook.fail_on_write:
            raise RuntimeError(f"Cannot write {self._name}!R{row}C{col}")
        self.workbook.writes.append((self._name, row, col, value))
        cells = self.workbook.cells[self._name]
        if value is None:
            cells.pop((row, col), None)
        else:
            cells[(row, col)] = value

    def get_array(self, row: int, col: int, row_count: int, col_count: int) -> list[list[Any]]:
        return [
            [self.get_value(r, c) for c in range(col, col + col_count)]
            for r in range(row, row + row_count)
        ]


class FakeWorkbook:
    """WorkbookHandle over ``{sheet: {(row, col): value or Formula}}``."""

    def __init__(self, cells: dict[str, dict[tuple[int, int], Any]], fail_on_write: set) -> None:
        self.cells = cells
        self.fail_on_write = fail_on_write
        self.writes: list[tuple[str, int, int, Any]] = []

    def lookup(self, sheet: str, row: int, col: int) -> Any:
        value = self.cells[sheet].get((row, col))
        if isinstance(value, Formula):
            return value.fn(self.lookup)
        return value

    @property
    def sheet_names(self) -> list[str]:
        return list(self.cells)

    def active_sheet(self) -> FakeSheet:
        return FakeSheet(self, next(iter(self.cells)))

    def sheet_by_name(self, name: str) -> FakeSheet | None:
        if name not in self.cells:
            return None
        return FakeSheet(self, name)


class FakeEngine:
    """
    CalculationEngine building FakeWorkbooks from a fixed cell layout.

    The model bytes are ignored, except that empty bytes fail to build.

    Attributes:
        build_count: Number of handles built so far.
        fail_on_write: ``(sheet, row, col)`` cells whose write raises.
    """

    def __init__(self, layout: dict[str, dict[tuple[int, int], Any]]) -> None:
        self.layout = layout
        self.build_count = 0
        self.fail_on_write: set[tuple[str, int, int]] = set()

    def build(self, model_data: bytes) -> FakeWorkbook:
        if not model_data:
            raise ValueError("empty model")
        self.build_count += 1
        return FakeWorkbook(copy.deepcopy(self.layout), self.fail_on_write)


def _interest(lookup: Callable[[str, int, int], Any]) -> Any:
    rate = lookup("Inputs", 0, 1) or 0
    years = lookup("Inputs", 1, 1) or 0
    principal = lookup("Inputs", 2, 1) or 0
    return principal * rate * years


LOAN_LAYOUT: dict[str, dict[tuple[int, int], Any]] = {
    "Inputs": {
        (0, 0): "Rate",
        (1, 0): "Years",
        (2, 0): "Principal",
        (3, 0): "Currency",
        (4, 0): "Fixed",
    },
    "Results": {
        (0, 0): "Interest",
        (0, 1): Formula(_interest),
        (2, 0): Formula(lambda get: get("Inputs", 0, 1)),
        (2, 1): Formula(lambda get: get("Inputs", 1, 1)),
        (3, 0): Formula(lambda get: get("Inputs", 2, 1)),
        (3, 1): Formula(lambda get: (get("Inputs", 0, 1) or 0) * (get("Inputs", 1, 1) or 0)),
    },
}


def loan_definition() -> dict[str, Any]:
    """The loan service definition, as it is published over the API."""
    return {
        "name": "Loan Calculator",
        "inputs": [
            {
                "name": "rate",
                "title": "Interest Rate",
                "address": "Inputs!B1",
                "type": "number",
                "min": 0,
                "max": 1,
                "format_string": "0.00%",
            },
            {
                "name": "years",
                "title": "Years",
                "address": "Inputs!B2",
                "type": "number",
                "mandatory": False,
                "default": 30,
                "min": 1,
                "max": 50,
            },
            {
                "name": "principal",
                "address": "Inputs!B3",
                "type": "number",
                "mandatory": False,
                "default": 100000,
            },
            {
                "name": "currency",
                "address": "Inputs!B4",
                "type": "string",
                "mandatory": False,
                "allowed_values": ["EUR", "USD"],
            },
            {
                "name": "fixed_rate",
                "title": "Fixed Rate",
                "address": "Inputs!B5",
                "type": "boolean",
                "mandatory": False,
                "default": True,
            },
        ],
        "outputs": [
            {
                "name": "interest",
                "title": "Total Interest",
                "address": "Results!B1",
                "type": "number",
                "format_string": "#,##0.00",
            },
            {
                "name": "summary",
                "address": "Results!A3:B4",
                "type": "array",
            },
        ],
    }


def build_loan_workbook() -> bytes:
    """
    Author the loan model with XlsxWriter.

    Formula cells carry the values Excel would cache for the default
    inputs (5% over 30 years on 100000).
    """
    output = BytesIO()
    workbook = xlsxwriter.Workbook(output, {"in_memory": True})

    inputs = workbook.add_worksheet("Inputs")
    inputs.write_column("A1", ["Rate", "Years", "Principal", "Currency", "Fixed"])
    inputs.write_number("B1", 0.05)
    inputs.write_number("B2", 30)
    inputs.write_number("B3", 100000)
    inputs.write_string("B4", "EUR")
    inputs.write_boolean("B5", True)

    results = workbook.add_worksheet("Results")
    results.write_string("A1", "Interest")
    results.write_formula("B1", "=Inputs!B3*Inputs!B1*Inputs!B2", None, 150000)
    results.write_formula("A3", "=Inputs!B1", None, 0.05)
    results.write_formula("B3", "=Inputs!B2", None, 30)
    results.write_formula("A4", "=Inputs!B3", None, 100000)
    results.write_formula("B4", "=Inputs!B1*Inputs!B2", None, 1.5)

    workbook.close()
    return output.getvalue()


def build_report_workbook(active: str) -> bytes:
    """
    Author a two-sheet model opening on ``active``.

    ``Cover`` holds a single title cell; ``Calc`` holds a 3x3 block.
    """
    output = BytesIO()
    workbook = xlsxwriter.Workbook(output, {"in_memory": True})

    cover = workbook.add_worksheet("Cover")
    cover.write_string("A1", "Quarterly report")

    calc = workbook.add_worksheet("Calc")
    for row in range(3):
        calc.write_row(row, 0, [row * 3 + col for col in range(3)])

    {"Cover": cover, "Calc": calc}[active].activate()
    workbook.close()
    return output.getvalue()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test files.

    Yields:
        Path to the temporary directory.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def loan_model() -> bytes:
    """Serialized loan model authored with XlsxWriter."""
    return build_loan_workbook()


@pytest.fixture
def loan_descriptor(loan_model: bytes) -> ServiceDescriptor:
    """The loan service, bound to the XlsxWriter model."""
    definition = loan_definition()
    return ServiceDescriptor(
        service_id="loan",
        name=definition["name"],
        inputs=definition["inputs"],
        outputs=definition["outputs"],
        model_data=loan_model,
    )


@pytest.fixture
def fake_engine() -> FakeEngine:
    """Recalculating engine with the loan layout."""
    return FakeEngine(LOAN_LAYOUT)


@pytest.fixture
def clock() -> list[float]:
    """Mutable fake monotonic clock; advance it with ``clock[0] += seconds``."""
    return [1000.0]


@pytest.fixture
def workbook_cache(fake_engine: FakeEngine, clock: list[float]) -> WorkbookCache:
    """WorkbookCache over the fake engine and fake clock."""
    return WorkbookCache(fake_engine, ttl_seconds=60, max_entries=10, clock=lambda: clock[0])


@pytest.fixture
def telemetry_sink() -> InMemoryTelemetrySink:
    """In-memory telemetry sink."""
    return InMemoryTelemetrySink()


@pytest.fixture
def calculation_service(
    workbook_cache: WorkbookCache,
    telemetry_sink: InMemoryTelemetrySink,
) -> Generator[CalculationService, None, None]:
    """
    CalculationService over the fake engine, recording to ``telemetry_sink``.

    Yields:
        CalculationService instance.
    """
    recorder = TelemetryRecorder([telemetry_sink])
    service = CalculationService(
        cache=workbook_cache,
        validator=InputValidator(),
        orchestrator=CalculationOrchestrator(),
        result_builder=ResultBuilder(recorder),
    )
    yield service
    recorder.shutdown()


@pytest.fixture
def service_definition() -> dict[str, Any]:
    """The loan service definition as published over the API."""
    return loan_definition()


@pytest.fixture
def report_model_factory() -> Callable[[str], bytes]:
    """Build two-sheet models opening on the given sheet."""
    return build_report_workbook


@pytest.fixture
def engine_factory() -> Callable[[dict], FakeEngine]:
    """Build FakeEngines for custom layouts."""
    return FakeEngine


@pytest.fixture
def formula() -> type[Formula]:
    """The Formula cell type understood by FakeEngine."""
    return Formula
