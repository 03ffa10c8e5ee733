"""
Flatten a schemaless document into an ordered mapping of field path to string value.

Nested keys join with ".", sequence elements append "@<index>" to the parent path:
{"a": {"b": 1}, "tags": ["x", None]} -> {"a.b": "1", "tags@0": "x", "tags@1": "null"}
Empty mappings and sequences contribute nothing.
"""

from collections.abc import Mapping
from typing import Any

PATH_SEPARATOR = "."
INDEX_MARKER = "@"


def scalar_to_text(value: Any) -> str:
    """Render a leaf value the way it is stored in the index."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def flatten_document(body: Mapping[str, Any]) -> dict[str, str]:
    """Pure transform; source insertion order is preserved."""
    out: dict[str, str] = {}
    for key, value in body.items():
        _flatten_into(out, str(key), value)
    return out


def _flatten_into(out: dict[str, str], path: str, value: Any) -> None:
    if isinstance(value, Mapping):
        for key, child in value.items():
            _flatten_into(out, f"{path}{PATH_SEPARATOR}{key}", child)
    elif isinstance(value, (list, tuple)):
        for i, child in enumerate(value):
            _flatten_into(out, f"{path}{INDEX_MARKER}{i}", child)
    else:
        out[path] = scalar_to_text(value)
