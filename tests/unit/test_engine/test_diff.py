"""Tests for the positional JSON Patch diff."""

from __future__ import annotations

import copy

from deskscope.domain.models import DiffEnvelope, FSEvent, FSEventKind, to_wire
from deskscope.engine.diff import apply_envelope, create_diff_envelope, make_patch


class TestMakePatch:
    """Patch shape on generic JSON values."""

    def test_identical_values_give_empty_patch(self) -> None:
        doc = {"a": [1, {"b": None}], "c": "x"}
        assert make_patch(doc, copy.deepcopy(doc)).patch == []

    def test_inputs_not_modified(self) -> None:
        old = {"a": [1, 2, 3], "b": {"c": 1}}
        new = {"a": [1], "b": {"d": 2}}
        old_copy, new_copy = copy.deepcopy(old), copy.deepcopy(new)
        make_patch(old, new)
        assert old == old_copy
        assert new == new_copy

    def test_patch_values_are_independent(self) -> None:
        new = {"a": {"nested": [1]}}
        patch = make_patch({}, new)
        new["a"]["nested"].append(2)
        assert patch.patch == [{"op": "add", "path": "/a", "value": {"nested": [1]}}]

    def test_object_members(self) -> None:
        ops = make_patch({"keep": 1, "gone": 2, "change": 3}, {"keep": 1, "change": 4, "new": 5}).patch
        assert ops == [
            {"op": "remove", "path": "/gone"},
            {"op": "replace", "path": "/change", "value": 4},
            {"op": "add", "path": "/new", "value": 5},
        ]

    def test_list_growth_appends_in_order(self) -> None:
        ops = make_patch({"l": [1]}, {"l": [1, 2, 3]}).patch
        assert ops == [
            {"op": "add", "path": "/l/1", "value": 2},
            {"op": "add", "path": "/l/2", "value": 3},
        ]

    def test_list_shrink_removes_highest_index_first(self) -> None:
        ops = make_patch({"l": [1, 2, 3, 4]}, {"l": [9]}).patch
        assert ops == [
            {"op": "replace", "path": "/l/0", "value": 9},
            {"op": "remove", "path": "/l/3"},
            {"op": "remove", "path": "/l/2"},
            {"op": "remove", "path": "/l/1"},
        ]

    def test_pointer_escaping(self) -> None:
        ops = make_patch({"a/b": 1, "c~d": 1}, {"a/b": 2, "c~d": 2}).patch
        assert [op["path"] for op in ops] == ["/a~1b", "/c~0d"]

    def test_bool_and_int_differ(self) -> None:
        assert make_patch({"v": True}, {"v": 1}).patch == [{"op": "replace", "path": "/v", "value": 1}]
        assert make_patch({"v": 1}, {"v": 1.5}).patch == [{"op": "replace", "path": "/v", "value": 1.5}]

    def test_null_to_object_is_replace(self) -> None:
        ops = make_patch({"focus": None}, {"focus": {"id": "0x1"}}).patch
        assert ops == [{"op": "replace", "path": "/focus", "value": {"id": "0x1"}}]

    def test_deterministic(self) -> None:
        old = {"a": [1, 2], "b": {"x": 1, "y": 2}}
        new = {"a": [2], "b": {"y": 3, "z": 4}}
        assert make_patch(old, new).patch == make_patch(old, new).patch

    def test_applies_cleanly(self) -> None:
        old = {"a": [1, 2, 3, {"k": "v"}], "b": {"x": None}, "c": "s"}
        new = {"a": [0, 2], "b": {"x": {"deep": [True]}}, "d": 1.5}
        assert make_patch(old, new).apply(old) == new
        assert old["c"] == "s"


class TestDiffEnvelope:
    """Envelopes between real observations."""

    def test_round_trip(self, observation_factory) -> None:
        previous = observation_factory(0)
        current = observation_factory(
            1,
            windows=previous.windows[:1],
            fs_events=[FSEvent(path="/home/u/a.txt", kind=FSEventKind.CREATE, ts=1_700_000_000.5)],
            focus=None,
        )
        envelope = create_diff_envelope(previous, current)
        assert apply_envelope(to_wire(previous), envelope) == to_wire(current)

    def test_envelope_timing_from_current(self, observation_factory) -> None:
        envelope = create_diff_envelope(observation_factory(0), observation_factory(3))
        assert isinstance(envelope, DiffEnvelope)
        assert envelope.ts == 1_700_000_003.0
        assert envelope.monotonic_ms == 3000
        assert set(to_wire(envelope)) == {"ts", "monotonic_ms", "patch"}

    def test_unchanged_observation_gives_only_timing_ops(self, sample_observation) -> None:
        later = sample_observation.model_copy(update={"ts": sample_observation.ts + 1, "monotonic_ms": 1000})
        envelope = create_diff_envelope(sample_observation, later)
        assert {op["path"] for op in envelope.patch} == {"/ts", "/monotonic_ms"}

    def test_previous_wire_not_modified(self, observation_factory) -> None:
        previous = to_wire(observation_factory(0))
        snapshot = copy.deepcopy(previous)
        apply_envelope(previous, create_diff_envelope(observation_factory(0), observation_factory(1)))
        assert previous == snapshot
