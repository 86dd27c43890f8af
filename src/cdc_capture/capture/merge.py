"""Merge driver producing one ordered stream across change tables."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import structlog

from cdc_capture.capture.change_table import TableId
from cdc_capture.capture.cursor import ChangeTableCursor, CursorState, Operation
from cdc_capture.capture.lsn import TxLogPosition
from cdc_capture.config.models import OverlapPolicy

logger = structlog.get_logger()


@dataclass(slots=True)
class ChangeEvent:
    """A single row change, materialized against the current source schema."""

    source_table_id: TableId | None
    capture_instance: str
    position: TxLogPosition
    operation: Operation
    data: list[Any]
    columns: list[str]


class ChangeTableMerger:
    """Merges change table cursors into one stream ordered by ``TxLogPosition``.

    Rows whose commit LSN lies outside their capture instance's validity
    window are skipped.  Rows at the same position are emitted newest
    capture instance first (larger start LSN, then name).  When two capture
    instances of the same source table report the same position,
    ``OverlapPolicy.PREFER_NEWER`` emits only the newer one's row and
    ``OverlapPolicy.EMIT_ALL`` emits both.

    Errors raised by a cursor propagate to the caller; the other cursors
    are left as they are.  Closing the iterator before it is exhausted
    releases every cursor's result.  A merger that is never iterated must
    be released with :meth:`close`.
    """

    def __init__(
        self,
        cursors: Iterable[ChangeTableCursor],
        overlap_policy: OverlapPolicy = OverlapPolicy.PREFER_NEWER,
    ) -> None:
        self._cursors = list(cursors)
        self._overlap_policy = overlap_policy
        self._emitted = 0
        self._skipped = 0

    @property
    def emitted(self) -> int:
        return self._emitted

    @property
    def skipped(self) -> int:
        return self._skipped

    def __iter__(self) -> Iterator[ChangeEvent]:
        try:
            yield from self._merge()
        except GeneratorExit:
            # stopped early by the caller
            self.close()
            raise

    def _merge(self) -> Iterator[ChangeEvent]:
        for cursor in self._cursors:
            if cursor.state == CursorState.UNSTARTED:
                cursor.advance()

        while True:
            live = [c for c in self._cursors if not c.is_completed]
            if not live:
                break
            position = min(live).current_position
            tied = self._tie_order([c for c in live if c.current_position == position])

            emitted_sources: set[TableId | None] = set()
            for cursor in tied:
                event = self._accept(cursor, position, emitted_sources)
                if event is not None:
                    self._emitted += 1
                    emitted_sources.add(event.source_table_id)
                    yield event
                else:
                    self._skipped += 1
                cursor.advance()

        logger.debug(
            "merge.completed",
            cursors=len(self._cursors),
            emitted=self._emitted,
            skipped=self._skipped,
        )

    def close(self) -> None:
        """Release every cursor's result."""
        for cursor in self._cursors:
            cursor.close()

    @staticmethod
    def _tie_order(cursors: list[ChangeTableCursor]) -> list[ChangeTableCursor]:
        ordered = sorted(cursors, key=lambda c: c.change_table.capture_instance)
        ordered.sort(key=lambda c: c.change_table.start_lsn, reverse=True)
        return ordered

    def _accept(
        self,
        cursor: ChangeTableCursor,
        position: TxLogPosition,
        emitted_sources: set[TableId | None],
    ) -> ChangeEvent | None:
        table = cursor.change_table
        if not table.is_valid_at(position):
            logger.debug(
                "merge.row_outside_window",
                capture_instance=table.capture_instance,
                position=str(position),
                start_lsn=str(table.start_lsn),
                stop_lsn=str(table.stop_lsn),
            )
            return None
        if (
            self._overlap_policy == OverlapPolicy.PREFER_NEWER
            and table.source_table_id is not None
            and table.source_table_id in emitted_sources
        ):
            logger.info(
                "merge.overlap_skipped",
                capture_instance=table.capture_instance,
                source_table=str(table.source_table_id),
                position=str(position),
            )
            return None

        columns = (
            table.source_table.column_names() if table.source_table is not None else []
        )
        return ChangeEvent(
            source_table_id=table.source_table_id,
            capture_instance=table.capture_instance,
            position=position,
            operation=cursor.current_operation,
            data=cursor.current_row_data(),
            columns=columns,
        )
