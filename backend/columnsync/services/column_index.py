"""
ColumnIndex: grey structural markers keyed by ``building::column``.

At most one live entity exists per key. Index entries whose entity was
removed from the scene behind our back are purged the next time the key is
touched, never served.

Each key also keeps a *requested* show flag (what highlights/resolutions
asked for); the rendered flag is ``requested AND global visibility``, so the
global toggle can be switched off and on again without losing per-column
suppression.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from columnsync.config import COLORS, EXTRUDED_HEIGHT
from columnsync.models.entities import (
    ColumnTag,
    HighlightTag,
    PolygonGeometry,
    RenderEntity,
    next_entity_id,
)
from columnsync.services import geodesy
from columnsync.services.errors import normalize_id
from columnsync.services.feature_service import FeatureService
from columnsync.services.perf_monitor import timed_async
from columnsync.services.scene import Scene

logger = logging.getLogger("columnsync.columns")


def column_key(building, column) -> str:
    return f"{normalize_id(building)}::{normalize_id(column)}"


def rings_from_feature(feature: Dict[str, Any]) -> List[List[tuple]]:
    """Outer rings of a Polygon / MultiPolygon feature (other geometry types yield nothing)."""
    geom = (feature or {}).get("geometry") or {}
    gtype = geom.get("type")
    coords = geom.get("coordinates") or []
    if gtype == "Polygon":
        return [geodesy.open_ring(coords[0])] if coords else []
    if gtype == "MultiPolygon":
        return [geodesy.open_ring(poly[0]) for poly in coords if poly]
    return []


@dataclass
class ColumnShape:
    """What sensor placement needs to know about one rendered column."""
    column: str
    building: str
    ring: List[tuple]
    height: float
    entity: RenderEntity


class ColumnIndex:
    def __init__(self, scene: Scene, features: FeatureService, height: float = EXTRUDED_HEIGHT):
        self.scene = scene
        self.features = features
        self.height = height
        self.visible = True
        self._index: Dict[str, RenderEntity] = {}
        self._requested: Dict[str, bool] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, building, column) -> Optional[RenderEntity]:
        """Live entity for the key; a stale entry is dropped and None returned."""
        key = column_key(building, column)
        ent = self._index.get(key)
        if ent is None:
            return None
        if not self.scene.contains(ent):
            del self._index[key]
            return None
        return ent

    def __len__(self) -> int:
        return sum(1 for e in self._index.values() if self.scene.contains(e))

    def _effective(self, key: str) -> bool:
        return self._requested.get(key, True) and self.visible

    # ------------------------------------------------------------------
    # Load / reuse
    # ------------------------------------------------------------------

    def _add_or_reuse(self, ring: List[tuple], props: Dict[str, Any]) -> Optional[RenderEntity]:
        building = props.get("bldg_id")
        column = props.get("id")
        if building in (None, "") or column is None:
            logger.debug(f"face without bldg_id/id skipped: {props!r}")
            return None
        if len(ring) < 3:
            return None

        key = column_key(building, column)
        exist = self.get(building, column)
        if exist is not None:
            exist.show = self._effective(key)
            return exist

        ent = RenderEntity(
            id=next_entity_id("column"),
            geometry=PolygonGeometry(ring=ring, extruded_height=self.height),
            tag=ColumnTag(building=normalize_id(building), column=normalize_id(column)),
            show=self._effective(key),
            color=COLORS["column"],
        )
        self.scene.add(ent)
        self._index[key] = ent
        return ent

    @timed_async
    async def load(self, buildings: Iterable[str] = (), bays: Iterable[str] = (),
                   pairs: Iterable[str] = ()) -> int:
        """Query faces and create or reuse one entity per key. Returns the number of faces seen."""
        feats = await self.features.fetch_columns(buildings=buildings, bays=bays, pairs=pairs)
        for f in feats:
            props = f.get("properties") or {}
            for ring in rings_from_feature(f):
                self._add_or_reuse(ring, props)
        self.apply_visibility(self.visible)
        logger.info(f"loaded {len(feats)} face(s), {len(self)} column(s) indexed")
        return len(feats)

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def apply_visibility(self, on: bool) -> None:
        """Global toggle for grey columns and red highlights together."""
        self.visible = bool(on)
        for ent in self.scene.values():
            tag = ent.tag
            if isinstance(tag, ColumnTag):
                ent.show = self._effective(column_key(tag.building, tag.column))
            elif isinstance(tag, HighlightTag):
                ent.show = self.visible
        self.scene.request_render()

    def set_show(self, building, column, show: bool) -> None:
        key = column_key(building, column)
        self._requested[key] = bool(show)
        ent = self.get(building, column)
        if ent is not None:
            ent.show = self._effective(key)

    def requested_show(self, building, column) -> bool:
        return self._requested.get(column_key(building, column), True)

    # ------------------------------------------------------------------
    # Teardown / inspection
    # ------------------------------------------------------------------

    def remove_by_building(self, building) -> int:
        bid = normalize_id(building)
        doomed = [e for e in self.scene.of_type(ColumnTag) if e.tag.building == bid]
        removed = self.scene.remove_all(doomed)
        prefix = f"{bid}::"
        for key in [k for k in self._index if k.startswith(prefix)]:
            del self._index[key]
        for key in [k for k in self._requested if k.startswith(prefix)]:
            del self._requested[key]
        logger.info(f"removed {removed} column(s)", extra={"building": bid})
        return removed

    def collect(self) -> Dict[str, ColumnShape]:
        """Live columns by column id (the id sensors reference)."""
        out: Dict[str, ColumnShape] = {}
        for ent in self.scene.of_type(ColumnTag):
            geom = ent.geometry
            if not isinstance(geom, PolygonGeometry) or not geom.ring:
                continue
            out[ent.tag.column] = ColumnShape(
                column=ent.tag.column,
                building=ent.tag.building,
                ring=list(geom.ring),
                height=geom.extruded_height or self.height,
                entity=ent,
            )
        return out
