"""Layering of config dicts (user file, project file, environment).

Later layers win key by key. Mappings are merged recursively, every other
value (lists included) is replaced whole, and a null in a later layer leaves
the earlier value in place, so a project file can set one key without
restating the rest.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new dict with override layered on top of base.

    Example:
        >>> deep_merge({"codex": {"binary": "codex", "args": ["a"]}},
        ...            {"codex": {"args": ["b"], "binary": None}})
        {'codex': {'binary': 'codex', 'args': ['b']}}
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def merge_configs(*layers: Mapping[str, Any]) -> dict[str, Any]:
    """Fold layers left to right; empty layers are skipped."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer:
            merged = deep_merge(merged, layer)
    return merged
