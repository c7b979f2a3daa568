"""
test_column_index.py: ColumnIndex load/reuse/visibility tests.

Tests cover:
  - load idempotence (no duplicate entity per building::column key)
  - lazy purge of stale index entries
  - per-column show AND global visibility, surviving a global off/on
  - remove_by_building isolation
  - collect() output used by sensor placement
"""

import asyncio

from columnsync.models.entities import ColumnTag, HighlightTag, PolygonGeometry, RenderEntity
from columnsync.services.column_index import rings_from_feature


def _load(ctx, **kw):
    return asyncio.run(ctx.columns.load(**kw))


def _columns(ctx):
    return ctx.scene.of_type(ColumnTag)


# ===========================================================================
# Class 1: load
# ===========================================================================

class TestLoad:

    def test_load_building_creates_one_entity_per_column(self, ctx):
        assert _load(ctx, buildings=["003"]) == 4
        assert len(_columns(ctx)) == 4

    def test_load_twice_is_idempotent(self, ctx):
        """Scenario: load({buildings: ["003"]}) twice == once."""
        _load(ctx, buildings=["003"])
        once = len(ctx.scene)
        _load(ctx, buildings=["003"])
        assert len(ctx.scene) == once
        assert len(ctx.columns) == 4

    def test_overlapping_filters_do_not_duplicate(self, ctx):
        _load(ctx, bays=["B"])
        _load(ctx, buildings=["003"])
        assert len(_columns(ctx)) == 4

    def test_stale_entry_is_purged_and_recreated(self, ctx):
        _load(ctx, buildings=["003"])
        old = ctx.columns.get("003", 12)
        ctx.scene.remove(old)
        assert ctx.columns.get("003", 12) is None
        _load(ctx, buildings=["003"])
        new = ctx.columns.get("003", 12)
        assert new is not None and new is not old
        assert len(_columns(ctx)) == 4

    def test_faces_without_ids_are_skipped(self, ctx, features):
        features.faces.append({
            "type": "Feature",
            "geometry": features.faces[0]["geometry"],
            "properties": {"bldg_id": "003"},
        })
        _load(ctx, buildings=["003"])
        assert len(_columns(ctx)) == 4

    def test_ring_is_stored_open(self, ctx):
        _load(ctx, buildings=["003"])
        ring = ctx.columns.get("003", 11).geometry.ring
        assert len(ring) == 4
        assert ring[0] != ring[-1]


class TestRings:

    def test_multipolygon_yields_each_outer_ring(self):
        sq = [[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]
        f = {"geometry": {"type": "MultiPolygon", "coordinates": [[sq], [sq]]}}
        assert len(rings_from_feature(f)) == 2

    def test_other_geometry_types_yield_nothing(self):
        assert rings_from_feature({"geometry": {"type": "Point", "coordinates": [0, 0]}}) == []
        assert rings_from_feature({}) == []


# ===========================================================================
# Class 2: visibility
# ===========================================================================

class TestVisibility:

    def test_set_show_hides_single_column(self, ctx):
        _load(ctx, buildings=["003"])
        ctx.columns.set_show("003", 12, False)
        assert ctx.columns.get("003", 12).show is False
        assert ctx.columns.get("003", 11).show is True

    def test_global_off_then_on_keeps_column_suppression(self, ctx):
        _load(ctx, buildings=["003"])
        ctx.columns.set_show("003", 12, False)
        ctx.columns.apply_visibility(False)
        assert all(not e.show for e in _columns(ctx))
        ctx.columns.apply_visibility(True)
        assert ctx.columns.get("003", 12).show is False
        assert ctx.columns.get("003", 11).show is True

    def test_set_show_true_is_anded_with_global(self, ctx):
        _load(ctx, buildings=["003"])
        ctx.columns.apply_visibility(False)
        ctx.columns.set_show("003", 12, True)
        assert ctx.columns.get("003", 12).show is False

    def test_global_visibility_covers_highlights(self, ctx):
        hl = ctx.scene.add(RenderEntity(
            id="hl-x",
            geometry=PolygonGeometry(ring=[(0, 0), (1, 0), (1, 1)], extruded_height=10),
            tag=HighlightTag(building="003", column="12"),
        ))
        ctx.columns.apply_visibility(False)
        assert hl.show is False
        ctx.columns.apply_visibility(True)
        assert hl.show is True

    def test_reload_applies_current_visibility(self, ctx):
        _load(ctx, buildings=["003"])
        ctx.columns.set_show("003", 12, False)
        _load(ctx, buildings=["003"])
        assert ctx.columns.get("003", 12).show is False

    def test_render_requested_on_visibility_change(self, ctx):
        before = ctx.scene.render_requests
        ctx.columns.apply_visibility(False)
        assert ctx.scene.render_requests > before


# ===========================================================================
# Class 3: teardown / collect
# ===========================================================================

class TestTeardown:

    def test_remove_by_building_only_touches_that_building(self, ctx):
        _load(ctx, buildings=["003", "007"])
        assert ctx.columns.remove_by_building("003") == 4
        remaining = _columns(ctx)
        assert [e.tag.building for e in remaining] == ["007"]
        assert ctx.columns.get("003", 12) is None

    def test_remove_by_building_forgets_requested_flags(self, ctx):
        _load(ctx, buildings=["003"])
        ctx.columns.set_show("003", 12, False)
        ctx.columns.remove_by_building("003")
        _load(ctx, buildings=["003"])
        assert ctx.columns.get("003", 12).show is True

    def test_collect_keys_by_column_id(self, ctx):
        _load(ctx, buildings=["003"])
        shapes = ctx.columns.collect()
        assert set(shapes) == {"11", "12", "13", "14"}
        assert shapes["12"].building == "003"
        assert shapes["12"].height == 10.0
        assert len(shapes["12"].ring) == 4
