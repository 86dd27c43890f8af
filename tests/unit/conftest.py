"""Shared fakes for change-table capture unit tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from cdc_capture.capture.change_table import ChangeTable, SourceTable, TableId
from cdc_capture.capture.lsn import Lsn

METADATA_COLUMNS = ["__$start_lsn", "__$seqval", "__$operation", "__$update_mask"]


class FakeChangeResult:
    """In-memory ChangeResult that records fetch and close calls."""

    def __init__(self, data_columns: Sequence[str], rows: Sequence[Sequence[Any]]):
        self._columns = [*METADATA_COLUMNS, *data_columns]
        self._rows = list(rows)
        self.fetch_calls = 0
        self.close_calls = 0
        self.fail_next: Exception | None = None
        self.fail_close: Exception | None = None

    def column_names(self) -> list[str]:
        return list(self._columns)

    def fetch_row(self) -> Sequence[Any] | None:
        self.fetch_calls += 1
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc
        if not self._rows:
            return None
        return self._rows.pop(0)

    def close(self) -> None:
        self.close_calls += 1
        if self.fail_close is not None:
            raise self.fail_close


def _row(commit: int, seq: int, op: int, *values: Any) -> tuple[Any, ...]:
    return (
        Lsn.from_int(commit).to_bytes(),
        Lsn.from_int(seq).to_bytes(),
        op,
        b"\x00",
        *values,
    )


def _table(
    capture_instance: str = "dbo_orders",
    source_columns: Sequence[str] | None = ("A", "B", "C"),
    *,
    source_table: str = "testDB.dbo.orders",
    start: int | None = None,
    stop: int | None = None,
    object_id: int = 1,
) -> ChangeTable:
    table_id = TableId.parse(source_table)
    ct = ChangeTable(
        capture_instance=capture_instance,
        change_table_object_id=object_id,
        source_table_id=table_id,
        start_lsn=Lsn.NULL if start is None else Lsn.from_int(start),
        stop_lsn=Lsn.NULL if stop is None else Lsn.from_int(stop),
    )
    if source_columns is None:
        return ct
    return ct.bind_source_table(SourceTable(table_id, tuple(source_columns)))


@pytest.fixture
def make_result() -> Callable[..., FakeChangeResult]:
    return FakeChangeResult


@pytest.fixture
def make_row() -> Callable[..., tuple[Any, ...]]:
    return _row


@pytest.fixture
def make_table() -> Callable[..., ChangeTable]:
    return _table
