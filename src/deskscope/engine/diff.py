"""Structural diff between consecutive observations.

Both observations are serialized to their wire form and compared
position by position: object members in serialization order, list items
by index. The result is an RFC 6902 JSON Patch that turns the previous
wire form into the current one.

This is not a minimal edit script for reordered lists. It is a
positional diff on a known schema, which keeps it deterministic and
linear in the size of the payloads.
"""

from __future__ import annotations

import copy
from typing import Any

import jsonpatch
from jsonpointer import JsonPointer

from deskscope.domain.models import DiffEnvelope, Observation, to_wire


def _pointer(parts: tuple[str | int, ...]) -> str:
    return JsonPointer.from_parts([str(part) for part in parts]).path


def _same_scalar(old: Any, new: Any) -> bool:
    # True == 1 and 1 == 1.0 in Python but not on the wire.
    return type(old) is type(new) and old == new


def _diff_value(old: Any, new: Any, parts: tuple[str | int, ...], ops: list[dict[str, Any]]) -> None:
    if isinstance(old, dict) and isinstance(new, dict):
        _diff_object(old, new, parts, ops)
    elif isinstance(old, list) and isinstance(new, list):
        _diff_array(old, new, parts, ops)
    elif not _same_scalar(old, new):
        ops.append({"op": "replace", "path": _pointer(parts), "value": copy.deepcopy(new)})


def _diff_object(
    old: dict[str, Any], new: dict[str, Any], parts: tuple[str | int, ...], ops: list[dict[str, Any]]
) -> None:
    for key, old_value in old.items():
        if key not in new:
            ops.append({"op": "remove", "path": _pointer((*parts, key))})
        else:
            _diff_value(old_value, new[key], (*parts, key), ops)
    for key, new_value in new.items():
        if key not in old:
            ops.append({"op": "add", "path": _pointer((*parts, key)), "value": copy.deepcopy(new_value)})


def _diff_array(
    old: list[Any], new: list[Any], parts: tuple[str | int, ...], ops: list[dict[str, Any]]
) -> None:
    common = min(len(old), len(new))
    for i in range(common):
        _diff_value(old[i], new[i], (*parts, i), ops)
    for i in range(common, len(new)):
        ops.append({"op": "add", "path": _pointer((*parts, i)), "value": copy.deepcopy(new[i])})
    # Highest index first so earlier removals do not shift later ones.
    for i in range(len(old) - 1, common - 1, -1):
        ops.append({"op": "remove", "path": _pointer((*parts, i))})


def make_patch(previous: Any, current: Any) -> jsonpatch.JsonPatch:
    """Compute the positional patch from ``previous`` to ``current``.

    Both arguments are generic JSON values (dicts, lists, scalars).
    Neither is modified.
    """
    ops: list[dict[str, Any]] = []
    _diff_value(previous, current, (), ops)
    return jsonpatch.JsonPatch(ops)


def create_diff_envelope(previous: Observation, current: Observation) -> DiffEnvelope:
    """Wrap the patch between two observations with the current timing.

    Applying ``envelope.patch`` to ``to_wire(previous)`` reproduces
    ``to_wire(current)`` exactly.
    """
    patch = make_patch(to_wire(previous), to_wire(current))
    return DiffEnvelope(ts=current.ts, monotonic_ms=current.monotonic_ms, patch=patch.patch)


def apply_envelope(previous: dict[str, Any], envelope: DiffEnvelope) -> dict[str, Any]:
    """Apply a diff envelope to a previous wire form, returning a new document."""
    return jsonpatch.apply_patch(previous, envelope.patch, in_place=False)
