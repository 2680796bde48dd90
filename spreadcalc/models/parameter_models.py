"""
Pydantic models describing a calculation service's parameter schema.

A service is published as a ServiceDescriptor: a serialized spreadsheet
model plus ordered input and output ParameterDefinitions, each bound to a
cell or a rectangular range of the model. All schema models are frozen;
they are read-only for the whole lifetime of an execution.
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal

from openpyxl.utils import column_index_from_string, get_column_letter
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_serializer, field_validator

from spreadcalc.exceptions.calculation_exceptions import CellAddressError

_CELL_PATTERN = re.compile(r"^([A-Z]{1,3})(\d+)$")
_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_key(key: str) -> str:
    """Lower-case a parameter key and strip spaces, underscores and hyphens."""
    return _SEPARATORS.sub("", key.lower())


class ParameterType(str, Enum):
    """Declared type of a parameter value."""

    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    ARRAY = "array"


class CellAddress(BaseModel):
    """
    A parsed cell or rectangular range reference.

    Rows and columns are 0-based. A single cell has ``row_count`` and
    ``col_count`` equal to 1.

    Attributes:
        sheet: Sheet name, or None when the address has no sheet prefix.
        row: Top row index (0-based).
        col: Left column index (0-based).
        row_count: Number of rows spanned.
        col_count: Number of columns spanned.
    """

    model_config = ConfigDict(frozen=True)

    sheet: str | None = Field(
        default=None,
        description="Sheet name, or None to use the active sheet",
    )
    row: int = Field(ge=0, description="Top row index (0-based)")
    col: int = Field(ge=0, description="Left column index (0-based)")
    row_count: int = Field(default=1, ge=1, description="Number of rows spanned")
    col_count: int = Field(default=1, ge=1, description="Number of columns spanned")

    @property
    def is_range(self) -> bool:
        """Whether the address spans more than one cell."""
        return self.row_count > 1 or self.col_count > 1

    @property
    def a1(self) -> str:
        """Render the address back to A1 notation."""
        start = f"{get_column_letter(self.col + 1)}{self.row + 1}"
        ref = start
        if self.is_range:
            end_col = get_column_letter(self.col + self.col_count)
            ref = f"{start}:{end_col}{self.row + self.row_count}"
        if self.sheet is None:
            return ref
        sheet = self.sheet
        if re.search(r"[^A-Za-z0-9_]", sheet):
            sheet = "'" + sheet.replace("'", "''") + "'"
        return f"{sheet}!{ref}"

    @classmethod
    def parse(cls, address: str) -> "CellAddress":
        """
        Parse an A1-style address.

        Supports formats like:
        - "B2", "$B$2"
        - "Sheet1!B2"
        - "'My Sheet'!A1:C3"

        A range whose normalized start and end references are equal is
        treated as a single cell.

        Args:
            address: The address string.

        Returns:
            CellAddress for the parsed reference.

        Raises:
            CellAddressError: If the address cannot be parsed.
        """
        if not isinstance(address, str) or not address.strip():
            raise CellAddressError(str(address), reason="Address is empty")

        sheet, sep, ref = address.strip().rpartition("!")
        sheet_name: str | None = None
        if sep:
            sheet_name = sheet.strip()
            if len(sheet_name) >= 2 and sheet_name.startswith("'") and sheet_name.endswith("'"):
                sheet_name = sheet_name[1:-1].replace("''", "'")
            if not sheet_name:
                raise CellAddressError(address, reason="Sheet name is empty")

        ref = ref.replace("$", "").strip().upper()
        start, _, end = ref.partition(":")
        end = end or start

        start_match = _CELL_PATTERN.match(start)
        end_match = _CELL_PATTERN.match(end)
        if not start_match or not end_match:
            raise CellAddressError(
                address,
                reason="Expected format: 'A1', 'Sheet1!A1' or 'Sheet1!A1:C10'",
            )

        start_row = int(start_match.group(2)) - 1
        end_row = int(end_match.group(2)) - 1
        start_col = column_index_from_string(start_match.group(1)) - 1
        end_col = column_index_from_string(end_match.group(1)) - 1

        if start_row < 0 or end_row < 0:
            raise CellAddressError(address, reason="Row numbers start at 1")
        if start_row > end_row or start_col > end_col:
            raise CellAddressError(
                address,
                reason="Start position must be before end position",
            )

        return cls(
            sheet=sheet_name,
            row=start_row,
            col=start_col,
            row_count=end_row - start_row + 1,
            col_count=end_col - start_col + 1,
        )


class LiteralDefault(BaseModel):
    """A default that is coerced and written like a caller-supplied value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["literal"] = "literal"
    value: Any


class ClearCell(BaseModel):
    """A default that forces the target cell to empty."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["clear"] = "clear"


DefaultValue = Annotated[LiteralDefault | ClearCell, Field(discriminator="kind")]


class ParameterDefinition(BaseModel):
    """
    One input or output parameter and its cell binding.

    Attributes:
        name: Machine name used by callers.
        title: Optional display title; callers may also use it as a key.
        address: Cell or range the parameter is bound to.
        type: Declared value type.
        mandatory: Whether callers must supply a value.
        min: Optional inclusive lower bound for numbers.
        max: Optional inclusive upper bound for numbers.
        allowed_values: Optional set of accepted values.
        allowed_values_case_sensitive: Whether string matching against
            ``allowed_values`` respects case.
        default: Literal default or ClearCell, used when an optional
            parameter is omitted.
        percentage: Explicit hint that numbers are fractions shown as percent.
        format_string: Display format, echoed on outputs.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Machine name used by callers")
    title: str | None = Field(default=None, description="Display title")
    address: CellAddress = Field(description="Cell or range the parameter is bound to")
    type: ParameterType = Field(default=ParameterType.STRING, description="Declared value type")
    mandatory: bool = Field(default=True, description="Whether callers must supply a value")
    min: float | None = Field(default=None, description="Inclusive lower bound")
    max: float | None = Field(default=None, description="Inclusive upper bound")
    allowed_values: tuple[Any, ...] | None = Field(
        default=None,
        description="Accepted values; empty or None means unrestricted",
    )
    allowed_values_case_sensitive: bool = Field(
        default=False,
        description="Whether string enum matching respects case",
    )
    default: DefaultValue | None = Field(
        default=None,
        description="Default used when an optional parameter is omitted",
    )
    percentage: bool = Field(
        default=False,
        description="Treat numbers as fractions that callers may send as percent",
    )
    format_string: str | None = Field(default=None, description="Display format string")

    @field_validator("address", mode="before")
    @classmethod
    def parse_address(cls, v: Any) -> Any:
        """Accept A1 strings in place of a structured address."""
        if isinstance(v, str):
            try:
                return CellAddress.parse(v)
            except CellAddressError as e:
                raise ValueError(e.message) from e
        return v

    @field_serializer("address")
    def serialize_address(self, address: CellAddress) -> str:
        return address.a1

    @field_validator("default", mode="before")
    @classmethod
    def wrap_literal_default(cls, v: Any) -> Any:
        """Wrap bare default values in a LiteralDefault."""
        if v is None or isinstance(v, (LiteralDefault, ClearCell)):
            return v
        if isinstance(v, dict) and v.get("kind") in ("literal", "clear"):
            return v
        return LiteralDefault(value=v)

    @property
    def display_title(self) -> str:
        return self.title or self.name

    @property
    def is_percentage(self) -> bool:
        """Whether the parameter is explicitly flagged as a percentage."""
        return self.percentage or (self.format_string is not None and "%" in self.format_string)


class ParameterIndex:
    """
    Lookup tables resolving caller keys to input definitions.

    Keys are matched, in order of preference, by exact name, normalized
    name, exact title and normalized title. The tables are built once per
    descriptor so resolving a request is a single pass over its keys.
    """

    def __init__(self, definitions: tuple[ParameterDefinition, ...]) -> None:
        self._tables: tuple[dict[str, ParameterDefinition], ...] = ({}, {}, {}, {})
        by_name, by_norm_name, by_title, by_norm_title = self._tables
        for definition in definitions:
            by_name.setdefault(definition.name, definition)
            by_norm_name.setdefault(normalize_key(definition.name), definition)
            if definition.title:
                by_title.setdefault(definition.title, definition)
                by_norm_title.setdefault(normalize_key(definition.title), definition)

    def resolve(self, raw_inputs: dict[str, Any]) -> dict[str, Any]:
        """
        Map definition names to the caller-supplied values.

        ``None`` and empty-string values count as not supplied. When
        several caller keys match the same definition, the best-ranked
        match wins, and the first key wins among equally ranked ones.

        Args:
            raw_inputs: Untyped caller inputs.

        Returns:
            Dictionary of definition name to raw value.
        """
        best: dict[str, tuple[int, Any]] = {}
        for key, value in raw_inputs.items():
            if value is None or value == "":
                continue
            key = str(key)
            normalized = normalize_key(key)
            candidates = (key, normalized, key, normalized)
            for rank, (table, candidate) in enumerate(zip(self._tables, candidates)):
                definition = table.get(candidate)
                if definition is None:
                    continue
                current = best.get(definition.name)
                if current is None or rank < current[0]:
                    best[definition.name] = (rank, value)
        return {name: value for name, (_, value) in best.items()}


class ServiceDescriptor(BaseModel):
    """
    Complete definition of one callable spreadsheet service.

    Attributes:
        service_id: Unique service identity, also the workbook cache key.
        name: Optional display name.
        inputs: Ordered input definitions.
        outputs: Ordered output definitions.
        use_caching: Reuse the compiled model across executions. When
            False every execution builds a private model.
        model_data: Serialized spreadsheet model.
    """

    model_config = ConfigDict(frozen=True)

    service_id: str = Field(min_length=1, description="Unique service identity")
    name: str | None = Field(default=None, description="Display name")
    inputs: tuple[ParameterDefinition, ...] = Field(default=(), description="Input definitions")
    outputs: tuple[ParameterDefinition, ...] = Field(default=(), description="Output definitions")
    use_caching: bool = Field(default=True, description="Reuse the compiled model across executions")
    model_data: bytes = Field(default=b"", repr=False, exclude=True, description="Serialized model")

    _index: ParameterIndex = PrivateAttr()

    def model_post_init(self, __context: Any) -> None:
        self._index = ParameterIndex(self.inputs)

    @property
    def input_index(self) -> ParameterIndex:
        return self._index

    @property
    def display_name(self) -> str:
        return self.name or self.service_id
