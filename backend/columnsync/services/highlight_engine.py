"""
HighlightEngine: red problem overlays on top of the grey column layer.

Creating a highlight suppresses the column it was drawn from; the paired
restore happens only when the owning problem record empties (see
``ProblemStore.resolve``).
"""
import logging
import math
from typing import Any, Dict, List, Optional

from shapely import affinity
from shapely.geometry import MultiPolygon, Polygon

from columnsync.config import COLORS, HIGHLIGHT_HEIGHT, JOINT_BUFFER_M
from columnsync.models.entities import (
    HighlightTag,
    PolygonGeometry,
    RenderEntity,
    next_entity_id,
)
from columnsync.services import geodesy
from columnsync.services.column_index import ColumnIndex, rings_from_feature
from columnsync.services.errors import normalize_bay, normalize_id
from columnsync.services.feature_service import FeatureService
from columnsync.services.problem_store import ProblemMeta, ProblemStore
from columnsync.services.scene import Scene

logger = logging.getLogger("columnsync.highlights")

MAX_MAPPED_FACES = 2


def face_matches(props: Dict[str, Any], bay: str, column) -> bool:
    """True when the face is the reported column on ``bay`` or shares its joint on that bay."""
    col = normalize_id(column)
    pre_bay = normalize_bay(props.get("pre_bay"))
    next_bay = normalize_bay(props.get("next_bay"))

    def same(key):
        value = props.get(key)
        return value is not None and normalize_id(value) == col

    return (
        ((pre_bay == bay or next_bay == bay) and same("id"))
        or (pre_bay == bay and same("pre_id"))
        or (next_bay == bay and same("next_id"))
    )


def joint_region(rings: List[List[tuple]], buffer_m: float = JOINT_BUFFER_M) -> List[tuple]:
    """
    Oriented bounding region around two faces, as an open lon/lat ring.

    The box is aligned with the bearing between the first two ring centroids,
    computed in the tangent plane at the rings' bbox centre, then buffered by
    ``buffer_m`` metres.
    """
    lons = [p[0] for r in rings for p in r]
    lats = [p[1] for r in rings for p in r]
    pivot = ((min(lons) + max(lons)) / 2.0, (min(lats) + max(lats)) / 2.0)

    angle = 0.0
    if len(rings) >= 2:
        angle = math.degrees(geodesy.bearing(geodesy.ring_centroid(rings[0]),
                                             geodesy.ring_centroid(rings[1])))

    local = MultiPolygon([Polygon(geodesy.to_local(pivot, r)) for r in rings])
    rotated = affinity.rotate(local, angle, origin=(0.0, 0.0))
    obb = affinity.rotate(rotated.envelope, -angle, origin=(0.0, 0.0))
    region = obb.buffer(buffer_m)
    return geodesy.from_local(pivot, list(region.exterior.coords)[:-1])


class HighlightEngine:
    def __init__(self, scene: Scene, columns: ColumnIndex, store: ProblemStore,
                 features: FeatureService):
        self.scene = scene
        self.columns = columns
        self.store = store
        self.features = features

    def _add_red(self, ring: List[tuple], tag: HighlightTag,
                 height: float = HIGHLIGHT_HEIGHT) -> RenderEntity:
        ent = RenderEntity(
            id=next_entity_id("highlight"),
            geometry=PolygonGeometry(ring=list(ring), extruded_height=height),
            tag=tag,
            show=self.columns.visible,
            color=COLORS["highlight"],
        )
        return self.scene.add(ent)

    def add_for_feature(self, feature: Dict[str, Any], meta: ProblemMeta,
                        height: float = HIGHLIGHT_HEIGHT) -> List[RenderEntity]:
        """One highlight per ring of ``feature``, tagged with ``meta``; the face's column is hidden."""
        props = feature.get("properties") or {}
        building = normalize_id(props.get("bldg_id", meta.building))
        source = props.get("id")
        source = normalize_id(source) if source is not None else meta.column

        tag = HighlightTag(building=meta.building, column=meta.column, bay=meta.bay,
                           source_column=source)
        made = [self._add_red(ring, tag, height) for ring in rings_from_feature(feature)]
        self.columns.set_show(building, source, False)
        self.scene.request_render()
        return made

    async def highlight_single(self, building, column, bay: Optional[str] = None) -> List[RenderEntity]:
        """Highlight one column face; ``bay`` tags the highlight so a bay-scoped resolve can match it."""
        feature = await self.features.get_column_by_id(building, column)
        if not feature:
            logger.info("column not found, nothing highlighted",
                        extra={"building": normalize_id(building), "column": normalize_id(column)})
            return []
        bay = normalize_bay(bay) or None
        rec = self.store.open(building, column, bay)
        made = self.add_for_feature(feature, ProblemMeta(rec.meta.building, rec.meta.column, bay))
        self.store.add_entities(building, column, made)
        return made

    async def highlight_mapped_both(self, building, column, bay) -> List[RenderEntity]:
        """
        Highlight the (at most two) faces meeting at ``column`` on ``bay``.

        Every highlight created here is tagged with the *input* bay, whatever
        the matched faces' own bay labels are, so that a later bay-scoped
        resolve is keyed by what was reported.
        """
        bay = normalize_bay(bay)
        faces = await self.features.fetch_building_faces(normalize_id(building))
        matched = []
        for f in faces:
            if face_matches(f.get("properties") or {}, bay, column):
                matched.append(f)
            if len(matched) >= MAX_MAPPED_FACES:
                break
        if not matched:
            logger.warning("no face matches the reported joint",
                           extra={"building": normalize_id(building),
                                  "column": normalize_id(column), "bay": bay})
            return []

        rec = self.store.open(building, column, bay)
        meta = ProblemMeta(rec.meta.building, rec.meta.column, bay)
        made: List[RenderEntity] = []
        for f in matched:
            made.extend(self.add_for_feature(f, meta))

        rings = [r for f in matched for r in rings_from_feature(f)]
        if len(matched) == MAX_MAPPED_FACES and len(rings) >= 2:
            tag = HighlightTag(building=meta.building, column=meta.column, bay=bay)
            made.append(self._add_red(joint_region(rings), tag))

        self.columns.set_show(meta.building, meta.column, False)
        self.store.add_entities(building, column, made)
        self.scene.request_render()
        return made

    def resolve(self, building, column, bay: Optional[str] = None) -> bool:
        building = normalize_id(building)
        column = normalize_id(column)

        def on_empty(removed: List[HighlightTag]) -> None:
            stray = [
                e for e in self.scene.of_type(HighlightTag)
                if e.tag.building == building and e.tag.column == column
            ]
            if stray:
                logger.debug(f"sweeping {len(stray)} untracked highlight(s)",
                             extra={"building": building, "column": column})
                self.scene.remove_all(stray)

            targets = [(building, column)]
            targets += [(t.building, t.source_column) for t in removed if t.source_column is not None]
            for bldg, col in dict.fromkeys(targets):
                if self.covered(bldg, col):
                    logger.debug("column still under another problem, left hidden",
                                 extra={"building": bldg, "column": col})
                    continue
                self.columns.set_show(bldg, col, True)

            if building not in self.store.open_buildings():
                self.columns.remove_by_building(building)

        ok = self.store.resolve(building, column, bay,
                                remove_entity=self.scene.remove, on_empty=on_empty)
        self.scene.request_render()
        return ok

    def covered(self, building, column) -> bool:
        """True while a live highlight still hides the column (its own face or a joint box of its record)."""
        building = normalize_id(building)
        column = normalize_id(column)
        for e in self.scene.of_type(HighlightTag):
            tag = e.tag
            if tag.building != building:
                continue
            if tag.source_column == column or (tag.source_column is None and tag.column == column):
                return True
        return False

    def list_open(self) -> List[ProblemMeta]:
        return self.store.list_open()

    def open_buildings(self):
        return self.store.open_buildings()
