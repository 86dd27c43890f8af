"""Forward-only cursor over one change table result.

Each poll cycle opens a result per live change table and wraps it in a
``ChangeTableCursor``.  The merge driver advances the cursor holding the
smallest ``TxLogPosition`` until every cursor is exhausted.

Lifecycle::

    UNSTARTED --advance--> POSITIONED --advance--> ... --advance--> COMPLETED

``COMPLETED`` is terminal: the result is released exactly once on that
transition and further ``advance()`` calls return ``False``.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import IntEnum, StrEnum
from typing import Any

import structlog

from cdc_capture.capture.change_table import ChangeTable
from cdc_capture.capture.errors import (
    CursorIoError,
    CursorStateError,
    MalformedPositionError,
)
from cdc_capture.capture.lsn import Lsn, TxLogPosition, merge_key
from cdc_capture.capture.remapping import ColumnRemapping
from cdc_capture.capture.result import (
    COL_COMMIT_LSN,
    COL_DATA,
    COL_OPERATION,
    COL_ROW_LSN,
    ChangeResult,
    captured_column_names,
)

logger = structlog.get_logger()


class Operation(IntEnum):
    """Values of the ``__$operation`` column."""

    DELETE = 1
    INSERT = 2
    UPDATE_BEFORE = 3
    UPDATE_AFTER = 4


class CursorState(StrEnum):
    UNSTARTED = "unstarted"
    POSITIONED = "positioned"
    COMPLETED = "completed"


class ChangeTableCursor:
    """Advance-only view of one open change table result.

    The cursor is the sole owner of *result*.  It is not safe to advance
    the same cursor from more than one caller at a time.
    """

    def __init__(self, change_table: ChangeTable, result: ChangeResult) -> None:
        self._change_table = change_table
        self._result = result
        self._state = CursorState.UNSTARTED
        self._position = TxLogPosition.NULL
        self._operation: Operation | None = None
        self._data: list[Any] | None = None
        self._remapping: ColumnRemapping | None = None
        self._released = False

    @property
    def change_table(self) -> ChangeTable:
        return self._change_table

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def is_completed(self) -> bool:
        return self._state == CursorState.COMPLETED

    @property
    def current_position(self) -> TxLogPosition:
        """Position of the current row; ``TxLogPosition.NULL`` when not positioned."""
        return self._position

    @property
    def current_operation(self) -> Operation:
        self._require_positioned("current_operation")
        assert self._operation is not None
        return self._operation

    def current_row_data(self) -> list[Any]:
        """Current row materialized against the full source schema."""
        self._require_positioned("current_row_data")
        assert self._data is not None
        return self._data

    def advance(self) -> bool:
        """Move to the next row; return ``False`` once the result is exhausted.

        Raises:
            CursorIoError: pulling or decoding the row failed.
            MalformedPositionError: the row carries an unusable LSN.
            SchemaDriftError: captured columns do not fit the source schema.

        The cursor state is unchanged when any of these is raised.
        """
        if self._state == CursorState.COMPLETED:
            return False
        if self._released:
            msg = f"Cursor for {self._change_table.capture_instance} is closed"
            raise CursorStateError(msg)

        try:
            row = self._result.fetch_row()
        except Exception as exc:
            msg = (
                f"Failed to fetch next change from "
                f"{self._change_table.capture_instance}"
            )
            raise CursorIoError(msg) from exc

        if row is None:
            self._complete()
            return False

        position, operation, data = self._decode(row)
        self._position = position
        self._operation = operation
        self._data = data
        self._state = CursorState.POSITIONED
        return True

    def close(self) -> None:
        """Release the result if it has not been released yet."""
        self._release()

    def __enter__(self) -> ChangeTableCursor:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- Ordering --------------------------------------------------------------

    def sort_key(self) -> tuple[int, TxLogPosition]:
        """Merge ordering key; exhausted cursors sort after positioned ones."""
        if self._state == CursorState.UNSTARTED:
            msg = (
                f"Cursor for {self._change_table.capture_instance} must be "
                f"advanced before it can be compared"
            )
            raise CursorStateError(msg)
        return merge_key(self._position)

    def compare_to(self, other: ChangeTableCursor) -> int:
        a, b = self.sort_key(), other.sort_key()
        if a == b:
            return 0
        return -1 if a < b else 1

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ChangeTableCursor):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ChangeTableCursor):
            return NotImplemented
        return self.sort_key() > other.sort_key()

    # -- Internals -------------------------------------------------------------

    def _decode(
        self, row: Sequence[Any]
    ) -> tuple[TxLogPosition, Operation, list[Any]]:
        try:
            commit_raw = row[COL_COMMIT_LSN]
            change_raw = row[COL_ROW_LSN]
            op_raw = row[COL_OPERATION]
            values = row[COL_DATA:]
        except (IndexError, TypeError) as exc:
            msg = (
                f"Change row from {self._change_table.capture_instance} is "
                f"missing metadata columns"
            )
            raise CursorIoError(msg) from exc

        position = TxLogPosition.value_of(
            Lsn.from_bytes(commit_raw), Lsn.from_bytes(change_raw)
        )
        if not position.is_available:
            msg = (
                f"Change row from {self._change_table.capture_instance} has "
                f"no position: {position}"
            )
            raise MalformedPositionError(msg)

        try:
            operation = Operation(int(op_raw))
        except (TypeError, ValueError) as exc:
            msg = (
                f"Unknown operation {op_raw!r} in change row from "
                f"{self._change_table.capture_instance}"
            )
            raise CursorIoError(msg) from exc

        return position, operation, self._column_remapping().materialize(values)

    def _column_remapping(self) -> ColumnRemapping:
        # Computed once per result; a new result may capture different columns.
        if self._remapping is None:
            try:
                columns = captured_column_names(self._result)
            except Exception as exc:
                msg = (
                    f"Failed to read result metadata for "
                    f"{self._change_table.capture_instance}"
                )
                raise CursorIoError(msg) from exc
            self._remapping = self._change_table.remapping_for(columns)
        return self._remapping

    def _require_positioned(self, operation: str) -> None:
        if self._state != CursorState.POSITIONED:
            msg = (
                f"{operation} requires a positioned cursor; cursor for "
                f"{self._change_table.capture_instance} is {self._state}"
            )
            raise CursorStateError(msg)

    def _complete(self) -> None:
        # A failed release leaves the state as it was.
        self._release()
        self._state = CursorState.COMPLETED
        self._position = TxLogPosition.NULL
        self._operation = None
        self._data = None
        logger.debug(
            "change_table.cursor_completed",
            capture_instance=self._change_table.capture_instance,
        )

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._result.close()
        except Exception as exc:
            msg = (
                f"Failed to release result for "
                f"{self._change_table.capture_instance}"
            )
            raise CursorIoError(msg) from exc

    def __repr__(self) -> str:
        return (
            f"ChangeTableCursor(changeTable={self._change_table}, "
            f"state={self._state}, position={self._position})"
        )
