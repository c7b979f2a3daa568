"""
test_problem_store.py: Unit tests for the problem lifecycle state machine.

Tests cover:
  - open: absent → OPEN, RESOLVED → OPEN, bay metadata
  - resolve: missing/closed records, full and bay-scoped removal
  - on_empty: fires once with every removed tag (including earlier partials)
  - list_open / open_buildings bookkeeping
"""

import pytest

from columnsync.models.entities import HighlightTag, PolygonGeometry, RenderEntity
from columnsync.services.problem_store import ProblemStatus, ProblemStore, problem_key


def _hl(building, column, bay=None, source=None, n=[0]):
    n[0] += 1
    return RenderEntity(
        id=f"hl-{n[0]}",
        geometry=PolygonGeometry(ring=[(0, 0), (1, 0), (1, 1)], extruded_height=10),
        tag=HighlightTag(building=building, column=column, bay=bay, source_column=source),
    )


@pytest.fixture
def store():
    return ProblemStore()


# ===========================================================================
# Class 1: open
# ===========================================================================

class TestOpen:

    def test_open_creates_record_in_open(self, store):
        store.open("003", 12)
        assert store.status("003", 12) is ProblemStatus.OPEN

    def test_key_normalises_numeric_forms(self, store):
        """12, 12.0 and "12" address the same record."""
        store.open("003", 12.0)
        assert store.get("003", "12") is store.get("003", 12)
        assert problem_key("003", 12.0) == "003::12"

    def test_open_forces_resolved_record_back_to_open(self, store):
        store.open("003", 12)
        store.resolve("003", 12)
        assert store.status("003", 12) is ProblemStatus.RESOLVED
        store.open("003", 12)
        assert store.status("003", 12) is ProblemStatus.OPEN

    def test_bay_is_normalised_into_meta(self, store):
        rec = store.open("003", 12, " a ")
        assert rec.meta.bay == "A"

    def test_absent_record_has_no_status(self, store):
        assert store.status("003", 99) is None


# ===========================================================================
# Class 2: resolve
# ===========================================================================

class TestResolve:

    def test_resolve_without_record_fails(self, store):
        assert store.resolve("003", 12) is False

    def test_resolve_on_resolved_record_fails(self, store):
        store.open("003", 12)
        assert store.resolve("003", 12) is True
        assert store.resolve("003", 12) is False

    def test_full_resolve_removes_every_highlight(self, store):
        store.open("003", 12)
        ents = [_hl("003", "12", "A"), _hl("003", "12", "B")]
        store.add_entities("003", 12, ents)
        removed = []
        assert store.resolve("003", 12, remove_entity=removed.append) is True
        assert removed == ents
        assert store.status("003", 12) is ProblemStatus.RESOLVED

    def test_bay_scoped_resolve_is_partial(self, store):
        """Only bay-A highlights go; the record stays OPEN while B remains."""
        store.open("003", 12)
        a, b = _hl("003", "12", "A"), _hl("003", "12", "B")
        store.add_entities("003", 12, [a, b])
        fired = []
        assert store.resolve("003", 12, "a", on_empty=fired.append) is True
        assert store.get("003", 12).entities == [b]
        assert store.status("003", 12) is ProblemStatus.OPEN
        assert fired == []

    def test_untagged_highlights_survive_bay_scoped_resolve(self, store):
        store.open("003", 12)
        plain = _hl("003", "12", None)
        store.add_entities("003", 12, [plain])
        store.resolve("003", 12, "A")
        assert store.get("003", 12).entities == [plain]
        assert store.status("003", 12) is ProblemStatus.OPEN

    def test_on_empty_receives_tags_from_all_partials(self, store):
        store.open("003", 12)
        a = _hl("003", "12", "A", source="11")
        b = _hl("003", "12", "B", source="13")
        store.add_entities("003", 12, [a, b])
        fired = []
        store.resolve("003", 12, "A", on_empty=fired.append)
        store.resolve("003", 12, "B", on_empty=fired.append)
        assert len(fired) == 1
        assert {t.source_column for t in fired[0]} == {"11", "13"}
        assert store.status("003", 12) is ProblemStatus.RESOLVED

    def test_resolve_with_no_highlights_completes_immediately(self, store):
        store.open("003", 12)
        fired = []
        store.resolve("003", 12, "A", on_empty=fired.append)
        assert fired == [[]]


# ===========================================================================
# Class 3: read helpers
# ===========================================================================

class TestReadHelpers:

    def test_list_open_excludes_resolved(self, store):
        store.open("003", 12)
        store.open("003", 13)
        store.resolve("003", 12)
        assert [(m.building, m.column) for m in store.list_open()] == [("003", "13")]

    def test_open_buildings(self, store):
        store.open("003", 12)
        store.open("007", 21)
        store.resolve("007", 21)
        assert store.open_buildings() == {"003"}

    def test_add_entities_without_record_is_noop(self, store):
        store.add_entities("003", 12, [_hl("003", "12")])
        assert store.get("003", 12) is None
