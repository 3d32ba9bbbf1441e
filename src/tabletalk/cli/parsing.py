"""Input parsing utilities for CLI commands."""

import json
from pathlib import Path
from typing import Any

from tabletalk.core.types import ColumnType

_COLUMN_MODIFIERS = ("required", "primary_key")


def parse_column_spec(spec: str) -> dict[str, Any]:
    """Parse a column specification string.

    Format: name[:type][:modifier]...

    Examples:
        "region" → {"name": "region", "type": "text"}
        "total:number" → {"name": "total", "type": "number"}
        "id:text:required:primary_key" → {"name": "id", "type": "text", "required": True, ...}

    Raises:
        ValueError: If spec format is invalid
    """
    parts = spec.split(":")
    name = parts[0].strip()
    if not name:
        raise ValueError(f"Invalid column spec: '{spec}'. Expected format: name[:type][:modifier]")

    column: dict[str, Any] = {"name": name, "type": parts[1] if len(parts) > 1 else "text"}
    for modifier in parts[2:]:
        if modifier not in _COLUMN_MODIFIERS:
            raise ValueError(
                f"Invalid modifier: '{modifier}'. Supported: {', '.join(_COLUMN_MODIFIERS)}"
            )
        column[modifier] = True
    return column


def to_schema_column(column: dict[str, Any]) -> dict[str, Any]:
    """Map a parsed column's file type onto a schema column type."""
    return {**column, "type": ColumnType.from_file_type(column.get("type")).value}


def read_json_file(path: str) -> Any:
    """Read a JSON document from file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with file_path.open("r") as f:
        return json.load(f)


def read_jsonl_file(path: str) -> list[dict[str, Any]]:
    """Read JSON Lines (JSONL) file.

    Each line should contain a separate JSON object.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If any line contains invalid JSON
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    records = []
    with file_path.open("r") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise json.JSONDecodeError(
                    f"Invalid JSON on line {line_num}: {e.msg}",
                    e.doc,
                    e.pos,
                ) from e

    return records


def read_rows_file(path: str) -> list[dict[str, Any]]:
    """Read rows from a JSON array file or a JSONL file (by extension)."""
    if path.endswith((".jsonl", ".ndjson")):
        return read_jsonl_file(path)
    data = read_json_file(path)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of row objects in {path}")
    return data
