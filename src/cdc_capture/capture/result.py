"""Boundary protocols for the query and schema layers.

The capture core never issues SQL.  It consumes an already-open,
forward-only ``ChangeResult`` per change table and asks a ``SchemaCatalog``
for the current column list of a source table.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import structlog

from cdc_capture.capture.change_table import ChangeTable, SourceTable, TableId

logger = structlog.get_logger()

# Fixed leading columns of a cdc.fn_cdc_get_all_changes_* style result.
COL_COMMIT_LSN = 0
COL_ROW_LSN = 1
COL_OPERATION = 2
COL_UPDATE_MASK = 3
COL_DATA = 4


@runtime_checkable
class ChangeResult(Protocol):
    """An open, forward-only result over one change table."""

    def column_names(self) -> list[str]:
        """Return every column name of the result, in result order."""
        ...

    def fetch_row(self) -> Sequence[Any] | None:
        """Return the next row, or ``None`` once the result is exhausted."""
        ...

    def close(self) -> None:
        """Release the underlying result."""
        ...


@runtime_checkable
class SchemaCatalog(Protocol):
    """Supplies the current ordered column names of a source table."""

    def columns_for(self, table_id: TableId) -> list[str]: ...


def captured_column_names(result: ChangeResult) -> list[str]:
    """Names of the captured data columns, i.e. everything after the metadata."""
    return result.column_names()[COL_DATA:]


def resolve_source_table(
    catalog: SchemaCatalog, change_table: ChangeTable
) -> ChangeTable:
    """Look up the source schema once and bind it to *change_table*."""
    if change_table.source_table_id is None:
        msg = (
            f"Capture instance '{change_table.capture_instance}' has no "
            f"source table to resolve"
        )
        raise ValueError(msg)
    columns = catalog.columns_for(change_table.source_table_id)
    logger.debug(
        "change_table.schema_resolved",
        capture_instance=change_table.capture_instance,
        source_table=str(change_table.source_table_id),
        columns=columns,
    )
    return change_table.bind_source_table(
        SourceTable(change_table.source_table_id, tuple(columns))
    )


class DbApiChangeResult:
    """Adapts a PEP 249 cursor that has already executed a change query."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    def column_names(self) -> list[str]:
        description = self._cursor.description
        if description is None:
            return []
        return [col[0] for col in description]

    def fetch_row(self) -> Sequence[Any] | None:
        row = self._cursor.fetchone()
        if row is None:
            return None
        return tuple(row)

    def close(self) -> None:
        self._cursor.close()
