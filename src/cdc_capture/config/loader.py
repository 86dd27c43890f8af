"""Capture config loading.

Config files are YAML.  String scalars may reference the environment as
``${VAR}`` or ``${VAR:-default}``; references are expanded while the file is
parsed, so numbers and booleans written literally keep their YAML types.
The parsed mapping is laid over ``defaults/capture.yaml`` and validated as a
:class:`CaptureConfig`.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cdc_capture.capture.change_table import ChangeTable, TableId
from cdc_capture.capture.lsn import Lsn
from cdc_capture.config.models import CaptureConfig

DEFAULTS_FILE = Path(__file__).parent / "defaults" / "capture.yaml"

_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_]\w*)(?::-(?P<default>[^}]*))?\}")

# Top-level sections whose keys are overlaid one by one on the defaults.
_SECTIONS = ("source", "merge")


def expand_env(text: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` references in *text*."""

    def _lookup(match: re.Match[str]) -> str:
        name, default = match.group("name", "default")
        value = os.environ.get(name, default)
        if value is None:
            msg = f"Environment variable '{name}' is not set and has no default"
            raise ValueError(msg)
        return value

    return _ENV_REF.sub(_lookup, text)


class _EnvLoader(yaml.SafeLoader):
    """SafeLoader that expands environment references in string scalars."""


def _construct_env_str(loader: _EnvLoader, node: yaml.ScalarNode) -> str:
    try:
        return expand_env(loader.construct_scalar(node))
    except ValueError as exc:
        mark = node.start_mark
        msg = f"{exc} (line {mark.line + 1}, column {mark.column + 1})"
        raise ValueError(msg) from exc


_EnvLoader.add_constructor("tag:yaml.org,2002:str", _construct_env_str)


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a capture config file into a mapping, expanding env references."""
    path = Path(path)
    if not path.is_file():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)
    try:
        with path.open() as f:
            data = yaml.load(f, Loader=_EnvLoader)  # noqa: S506
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {path}: {exc}"
        raise ValueError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{path} must contain a YAML mapping, got {type(data).__name__}"
        raise TypeError(msg)
    return data


def _default_capture_instance(entry: Any) -> Any:
    # SQL Server names a capture instance <schema>_<table> unless told otherwise
    if (
        isinstance(entry, dict)
        and "capture_instance" not in entry
        and isinstance(entry.get("source_table"), str)
    ):
        return {**entry, "capture_instance": entry["source_table"].replace(".", "_")}
    return entry


def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
    """Lay *data* over the built-in defaults without modifying either."""
    with DEFAULTS_FILE.open() as f:
        defaults: dict[str, Any] = yaml.safe_load(f)

    merged = {**defaults, **data}
    for section in _SECTIONS:
        override = data.get(section) or {}
        if isinstance(override, dict):
            merged[section] = {**defaults.get(section, {}), **override}

    instances = data.get("capture_instances") or []
    if isinstance(instances, list):
        merged["capture_instances"] = [
            _default_capture_instance(entry) for entry in instances
        ]
    return merged


def load_capture_config(path: str | Path) -> CaptureConfig:
    """Read, default and validate a capture config file."""
    data = apply_defaults(read_config_file(path))
    try:
        return CaptureConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid capture config ({path}):\n{exc}"
        raise ValueError(msg) from exc


def change_tables_from_config(config: CaptureConfig) -> list[ChangeTable]:
    """Build change table descriptors for the configured capture instances.

    Source tables are qualified with the configured database as catalog.
    """
    tables: list[ChangeTable] = []
    for ci in config.capture_instances:
        source_id = TableId.parse(f"{config.source.database}.{ci.source_table}")
        tables.append(
            ChangeTable(
                capture_instance=ci.capture_instance,
                change_table_object_id=ci.object_id,
                source_table_id=source_id,
                start_lsn=Lsn.from_string(ci.start_lsn),
                stop_lsn=Lsn.from_string(ci.stop_lsn),
            )
        )
    return tables
