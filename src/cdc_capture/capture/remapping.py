"""Column remapping between a change table result and its source table.

A capture instance records the columns the source table had when the
instance was created.  Rows are always materialized against the *current*
source schema, so captured values are placed by name into a row as wide as
the source table.  Slots the capture instance never recorded hold
``NOT_CAPTURED``, which is distinct from a SQL NULL (``None``).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final

from cdc_capture.capture.errors import SchemaDriftError


class _NotCaptured:
    """Marker for a source column absent from a capture instance."""

    _instance: _NotCaptured | None = None

    def __new__(cls) -> _NotCaptured:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_CAPTURED"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "NOT_CAPTURED"


NOT_CAPTURED: Final = _NotCaptured()


@dataclass(frozen=True, slots=True)
class ColumnRemapping:
    """Translation from result column position to source row slot.

    ``indices`` is ``None`` for the identity mapping, otherwise entry ``i``
    is the source slot receiving captured column ``i``.
    """

    source_columns: tuple[str, ...]
    result_columns: tuple[str, ...]
    indices: tuple[int, ...] | None

    @property
    def is_identity(self) -> bool:
        return self.indices is None

    @property
    def width(self) -> int:
        return len(self.source_columns)

    def source_index(self, result_index: int) -> int:
        """Return the source slot for the captured column at *result_index*."""
        if not 0 <= result_index < len(self.result_columns):
            msg = (
                f"Result column index {result_index} out of range "
                f"(captured {len(self.result_columns)} columns)"
            )
            raise IndexError(msg)
        if self.indices is None:
            return result_index
        return self.indices[result_index]

    def materialize(self, values: Sequence[Any]) -> list[Any]:
        """Place captured *values* (result order) into a source-width row."""
        if len(values) != len(self.result_columns):
            msg = (
                f"Expected {len(self.result_columns)} captured values, "
                f"got {len(values)}"
            )
            raise SchemaDriftError(msg)
        if self.indices is None:
            return list(values)
        row: list[Any] = [NOT_CAPTURED] * len(self.source_columns)
        for value, slot in zip(values, self.indices, strict=True):
            row[slot] = value
        return row


def build_column_remapping(
    source_columns: Sequence[str], result_columns: Sequence[str]
) -> ColumnRemapping:
    """Map captured *result_columns* onto the ordered *source_columns*.

    Raises SchemaDriftError when a captured column is missing from the
    source schema or appears twice in the result.
    """
    source = tuple(source_columns)
    result = tuple(result_columns)

    if source == result:
        return ColumnRemapping(source, result, None)

    positions = {name: i for i, name in enumerate(source)}
    missing = [name for name in result if name not in positions]
    if missing:
        msg = (
            f"Captured column(s) {missing} not present in source schema "
            f"{list(source)}"
        )
        raise SchemaDriftError(msg, missing=missing)

    if len(set(result)) != len(result):
        dupes = sorted({name for name in result if result.count(name) > 1})
        msg = f"Captured column(s) {dupes} appear more than once in the result"
        raise SchemaDriftError(msg)

    return ColumnRemapping(source, result, tuple(positions[name] for name in result))
