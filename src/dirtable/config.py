"""Declarative table configuration.

A :class:`TableConfig` can be written by hand next to the data it describes,
for example ``notes.yaml``::

    path: ~/notes
    format: markdown
    body_field: content
    create_if_missing: true
    on_foreign: warn
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import orjson
import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .exceptions import BuilderError


class TableConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: Path
    format: Optional[str] = None
    extension: Optional[str] = None
    body_field: Optional[str] = None
    create_if_missing: bool = False
    read_only: bool = False
    on_foreign: Literal["skip", "warn", "raise"] = "skip"
    ignore_decode_errors: bool = False
    include_hidden: bool = False

    @field_validator("extension")
    @classmethod
    def _dotted_extension(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return value if value.startswith(".") else f".{value}"


def load_config(path: Path | str) -> TableConfig:
    """Read a :class:`TableConfig` from a YAML or JSON file."""
    source = Path(path).expanduser()
    try:
        raw = source.read_bytes()
    except OSError as exc:
        raise BuilderError(f"Cannot read table config {source}: {exc}", path=source) from exc
    try:
        if source.suffix.lower() == ".json":
            payload = orjson.loads(raw)
        else:
            payload = yaml.safe_load(raw) or {}
    except (orjson.JSONDecodeError, yaml.YAMLError) as exc:
        raise BuilderError(f"Cannot parse table config {source}: {exc}", path=source) from exc
    if not isinstance(payload, dict):
        raise BuilderError(f"Table config {source} must be a mapping", path=source)
    payload.setdefault("path", ".")
    # A relative table path is relative to the config file, not the cwd.
    table_path = Path(str(payload["path"])).expanduser()
    if not table_path.is_absolute():
        payload["path"] = source.parent / table_path
    try:
        return TableConfig.model_validate(payload)
    except ValidationError as exc:
        raise BuilderError(f"Invalid table config {source}: {exc}", path=source) from exc
