"""Change table descriptors.

A ``ChangeTable`` describes one capture instance: which source table it
tracks, where its physical change table lives, and the half-open window
``[start_lsn, stop_lsn)`` during which its rows are authoritative.  A source
table has at most two capture instances while a schema change is in flight;
the older one is retired by assigning its stop position.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from cdc_capture.capture.errors import (
    ChangeTableRetiredError,
    SourceTableNotBoundError,
)
from cdc_capture.capture.lsn import Lsn, TxLogPosition
from cdc_capture.capture.remapping import ColumnRemapping, build_column_remapping

logger = structlog.get_logger()

CDC_SCHEMA = "cdc"
CHANGE_TABLE_SUFFIX = "_CT"


@dataclass(frozen=True, slots=True)
class TableId:
    """Fully qualified table identity: ``catalog.schema.table``."""

    catalog: str | None
    schema: str | None
    table: str

    @classmethod
    def parse(cls, name: str) -> TableId:
        """Parse ``table``, ``schema.table`` or ``catalog.schema.table``."""
        parts = name.split(".")
        if len(parts) == 1:
            return cls(None, None, parts[0])
        if len(parts) == 2:
            return cls(None, parts[0], parts[1])
        if len(parts) == 3:
            return cls(parts[0], parts[1], parts[2])
        msg = f"Table name '{name}' has too many parts"
        raise ValueError(msg)

    def __str__(self) -> str:
        return ".".join(p for p in (self.catalog, self.schema, self.table) if p)


@dataclass(frozen=True, slots=True)
class SourceTable:
    """Current schema of a tracked source table, as reported by the catalog."""

    table_id: TableId
    columns: tuple[str, ...]

    def column_names(self) -> list[str]:
        return list(self.columns)


def change_table_id_for(source_table_id: TableId, capture_instance: str) -> TableId:
    """Derive the physical change table for a capture instance.

    Same catalog as the source table, reserved ``cdc`` schema, and the
    capture instance name with the ``_CT`` suffix.
    """
    return TableId(
        source_table_id.catalog, CDC_SCHEMA, f"{capture_instance}{CHANGE_TABLE_SUFFIX}"
    )


@dataclass(frozen=True, slots=True)
class ChangeTable:
    """Descriptor of one capture instance and its change table.

    Instances are immutable; ``retire`` and ``bind_source_table`` return
    updated copies.
    """

    capture_instance: str
    change_table_object_id: int
    source_table_id: TableId | None = None
    start_lsn: Lsn = Lsn.NULL
    stop_lsn: Lsn = Lsn.NULL
    source_table: SourceTable | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.capture_instance:
            msg = "capture_instance must be a non-empty name"
            raise ValueError(msg)
        if (
            self.start_lsn.is_available
            and self.stop_lsn.is_available
            and self.stop_lsn < self.start_lsn
        ):
            msg = (
                f"Capture instance '{self.capture_instance}' has stop LSN "
                f"{self.stop_lsn} before start LSN {self.start_lsn}"
            )
            raise ValueError(msg)

    @property
    def change_table_id(self) -> TableId | None:
        if self.source_table_id is None:
            return None
        return change_table_id_for(self.source_table_id, self.capture_instance)

    @property
    def is_retired(self) -> bool:
        return self.stop_lsn.is_available

    def retire(self, stop_lsn: Lsn) -> ChangeTable:
        """Return this descriptor with its validity window closed at *stop_lsn*.

        A capture instance is retired exactly once, when a newer instance
        for the same source table supersedes it.
        """
        if self.is_retired:
            msg = (
                f"Capture instance '{self.capture_instance}' already retired "
                f"at {self.stop_lsn}"
            )
            raise ChangeTableRetiredError(msg)
        if not stop_lsn.is_available:
            msg = "Cannot retire a capture instance at the NULL LSN"
            raise ValueError(msg)
        retired = dataclasses.replace(self, stop_lsn=stop_lsn)
        logger.info(
            "change_table.retired",
            capture_instance=self.capture_instance,
            start_lsn=str(self.start_lsn),
            stop_lsn=str(stop_lsn),
        )
        return retired

    def bind_source_table(self, source_table: SourceTable) -> ChangeTable:
        """Return this descriptor bound to the current source schema."""
        if (
            self.source_table_id is not None
            and source_table.table_id != self.source_table_id
        ):
            msg = (
                f"Source table {source_table.table_id} does not match "
                f"capture instance '{self.capture_instance}' ({self.source_table_id})"
            )
            raise ValueError(msg)
        if self.source_table is not None and self.source_table != source_table:
            logger.info(
                "change_table.schema_rebound",
                capture_instance=self.capture_instance,
                previous_columns=self.source_table.column_names(),
                columns=source_table.column_names(),
            )
        return dataclasses.replace(
            self, source_table_id=source_table.table_id, source_table=source_table
        )

    def remapping_for(self, result_columns: Sequence[str]) -> ColumnRemapping:
        """Compute the column remapping for one result's captured columns."""
        if self.source_table is None:
            msg = (
                f"Source schema for capture instance '{self.capture_instance}' "
                f"is not bound"
            )
            raise SourceTableNotBoundError(msg)
        return build_column_remapping(self.source_table.columns, result_columns)

    def is_valid_at(self, position: TxLogPosition) -> bool:
        """Whether *position* falls inside ``[start_lsn, stop_lsn)``."""
        commit = position.commit_lsn
        if self.start_lsn.is_available and commit < self.start_lsn:
            return False
        return not (self.stop_lsn.is_available and commit >= self.stop_lsn)

    def __str__(self) -> str:
        return (
            f'Capture instance "{self.capture_instance}" '
            f"[sourceTableId={self.source_table_id}, "
            f"changeTableId={self.change_table_id}, startLsn={self.start_lsn}, "
            f"changeTableObjectId={self.change_table_object_id}, "
            f"stopLsn={self.stop_lsn}]"
        )
