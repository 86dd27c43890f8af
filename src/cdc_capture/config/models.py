"""Pydantic configuration models for change-table capture."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from cdc_capture.capture.errors import MalformedPositionError
from cdc_capture.capture.lsn import Lsn

_QUALIFIED_TABLE = re.compile(r"^[a-zA-Z_]\w*\.[a-zA-Z_]\w*$")


class OverlapPolicy(StrEnum):
    """Merge behaviour when two capture instances of a table share a position."""

    PREFER_NEWER = "prefer_newer"
    EMIT_ALL = "emit_all"


class SourceConfig(BaseModel):
    """Connection settings for the captured SQL Server database.

    Only used to identify the database; the capture core never connects.
    """

    host: str = "localhost"
    port: int = 1433
    database: str
    username: str = "cdc_user"
    password: SecretStr = SecretStr("cdc_password")
    # Schema-qualified source table names (e.g. "dbo.customers").
    tables: list[str] = Field(default_factory=list)

    @field_validator("tables")
    @classmethod
    def validate_qualified_names(cls, v: list[str]) -> list[str]:
        for table in v:
            if not _QUALIFIED_TABLE.match(table):
                msg = f"Table '{table}' must be schema-qualified (e.g. 'dbo.customers')"
                raise ValueError(msg)
        return v


class CaptureInstanceConfig(BaseModel):
    """A known capture instance and its validity window."""

    source_table: str
    capture_instance: str = Field(min_length=1)
    object_id: int = Field(ge=0)
    start_lsn: str | None = None
    stop_lsn: str | None = None

    @field_validator("source_table")
    @classmethod
    def validate_source_table(cls, v: str) -> str:
        if not _QUALIFIED_TABLE.match(v):
            msg = f"source_table '{v}' must be schema-qualified (e.g. 'dbo.customers')"
            raise ValueError(msg)
        return v

    @field_validator("start_lsn", "stop_lsn")
    @classmethod
    def validate_lsn(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            Lsn.from_string(v)
        except MalformedPositionError as exc:
            raise ValueError(str(exc)) from exc
        return v

    @model_validator(mode="after")
    def check_window(self) -> Self:
        start = Lsn.from_string(self.start_lsn)
        stop = Lsn.from_string(self.stop_lsn)
        if start.is_available and stop.is_available and stop < start:
            msg = (
                f"stop_lsn {self.stop_lsn} is before start_lsn {self.start_lsn} "
                f"for capture instance '{self.capture_instance}'"
            )
            raise ValueError(msg)
        return self


class MergeConfig(BaseModel):
    """Merge driver settings."""

    overlap_policy: OverlapPolicy = OverlapPolicy.PREFER_NEWER


class CaptureConfig(BaseModel, extra="forbid"):
    """Per-pipeline capture configuration."""

    pipeline_id: str
    source: SourceConfig
    capture_instances: list[CaptureInstanceConfig] = Field(default_factory=list)
    merge: MergeConfig = MergeConfig()

    @model_validator(mode="after")
    def check_capture_instances(self) -> Self:
        """Capture instance names are unique; at most two per source table."""
        names = [ci.capture_instance for ci in self.capture_instances]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            msg = f"Duplicate capture instance name(s): {dupes}"
            raise ValueError(msg)
        per_table: dict[str, int] = {}
        for ci in self.capture_instances:
            per_table[ci.source_table] = per_table.get(ci.source_table, 0) + 1
        crowded = sorted(t for t, n in per_table.items() if n > 2)
        if crowded:
            msg = f"Source table(s) {crowded} have more than two capture instances"
            raise ValueError(msg)
        return self
