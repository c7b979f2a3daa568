"""
RailCraneEngine: rail corridors per bay and the overhead crane spanning them.

Caches (all keyed by ``building::bay``):
  - rail-line pairs used for crane projection,
  - one crane model instance, moved in place on every placement.
Corridor entities are keyed by ``building::bay::line``.
"""
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from columnsync.config import (
    COLORS,
    CRANE_BASE_SCALE,
    CRANE_HEADING_OFFSET_DEG,
    CRANE_HEIGHT,
    CRANE_MODEL_URI,
    CRANE_NATIVE_SPAN_M,
    RAIL_BASE_HEIGHT,
    RAIL_THICKNESS,
    RAIL_WIDTH_M,
)
from columnsync.models.entities import (
    CorridorGeometry,
    CraneTag,
    ModelInstance,
    RailTag,
    RenderEntity,
    next_entity_id,
)
from columnsync.services import geodesy
from columnsync.services.errors import normalize_bay, normalize_id
from columnsync.services.feature_service import FeatureService
from columnsync.services.perf_monitor import timed_async
from columnsync.services.scene import Scene

logger = logging.getLogger("columnsync.rails")

Line = List[Tuple[float, float]]


def bay_key(building, bay) -> str:
    return f"{normalize_id(building)}::{normalize_bay(bay)}"


def lines_from_feature(feature: Dict[str, Any]) -> List[Line]:
    geom = (feature or {}).get("geometry") or {}
    coords = geom.get("coordinates") or []
    if geom.get("type") == "LineString":
        lines = [coords]
    elif geom.get("type") == "MultiLineString":
        lines = list(coords)
    else:
        return []
    return [[(float(c[0]), float(c[1])) for c in line] for line in lines]


def crane_transform(p_a, p_b, height: float = CRANE_HEIGHT, base: float = CRANE_BASE_SCALE,
                    native_span: float = CRANE_NATIVE_SPAN_M):
    """
    Model matrix for a crane bridging ``p_a`` → ``p_b``.

    Origin is ``p_a`` at ``height``; heading is the bearing a → b turned by the
    fixed model offset; the span axis (y) is scaled to the a-b distance.
    """
    heading = math.radians(CRANE_HEADING_OFFSET_DEG) - geodesy.bearing(p_a, p_b)
    dist = max(0.0, geodesy.planar_distance(p_a, p_b))
    sy = base * (dist / native_span if native_span > 0 else 1.0)
    return geodesy.model_matrix(p_a[0], p_a[1], height, heading, base, sy, base)


class RailCraneEngine:
    def __init__(self, scene: Scene, features: FeatureService, model_uri: str = CRANE_MODEL_URI):
        self.scene = scene
        self.features = features
        self.model_uri = model_uri
        self.visible = True
        self._index: Dict[str, RenderEntity] = {}
        self._lines: Dict[str, List[Line]] = {}
        self._cranes: Dict[str, ModelInstance] = {}

    # ------------------------------------------------------------------
    # Corridors
    # ------------------------------------------------------------------

    def _add_or_reuse_corridor(self, line: Line, props: Dict[str, Any]) -> Optional[RenderEntity]:
        if len(line) < 2:
            return None
        building = props.get("bldg_id")
        bay = props.get("bay")
        if building in (None, "") or bay in (None, ""):
            return None
        label = props.get("line")
        if label is None:
            label = f"{line[0][0]},{line[0][1]}::{len(line)}"
        tag = RailTag(building=normalize_id(building), bay=normalize_bay(bay), line=str(label))
        key = f"{tag.building}::{tag.bay}::{tag.line}"

        exist = self._index.get(key)
        if exist is not None:
            if self.scene.contains(exist):
                exist.show = self.visible
                return exist
            del self._index[key]

        ent = self.scene.add(RenderEntity(
            id=next_entity_id("rail"),
            geometry=CorridorGeometry(line=line, width=RAIL_WIDTH_M, height=RAIL_BASE_HEIGHT,
                                      extruded_height=RAIL_BASE_HEIGHT + RAIL_THICKNESS),
            tag=tag,
            show=self.visible,
            color=COLORS["rail"],
        ))
        self._index[key] = ent
        return ent

    @timed_async
    async def load(self, buildings: Iterable[str] = (), pairs: Iterable[str] = ()) -> int:
        feats = await self.features.fetch_rails(buildings=buildings, pairs=pairs)
        for f in feats:
            props = f.get("properties") or {}
            for line in lines_from_feature(f):
                self._add_or_reuse_corridor(line, props)
        self.apply_visibility(self.visible)
        return len(feats)

    def apply_visibility(self, on: bool) -> None:
        self.visible = bool(on)
        for ent in self.scene.of_type(RailTag):
            ent.show = self.visible
        self.scene.request_render()

    # ------------------------------------------------------------------
    # Rail lines / crane
    # ------------------------------------------------------------------

    async def get_lines(self, building, bay) -> List[Line]:
        """The bay's two rail lines, cached; empty unless at least two valid lines exist."""
        key = bay_key(building, bay)
        if key in self._lines:
            return self._lines[key]
        if not normalize_bay(bay):
            return []
        feats = await self.features.fetch_rail_lines(normalize_id(building), normalize_bay(bay))
        valid = []
        for f in feats:
            lines = lines_from_feature(f)
            if lines and len(lines[0]) >= 2:
                valid.append(lines[0])
        if len(valid) < 2:
            logger.warning(f"{len(valid)} usable rail line(s), need 2",
                           extra={"building": normalize_id(building), "bay": normalize_bay(bay)})
            return []
        pair = valid[:2]
        self._lines[key] = pair
        return pair

    def crane(self, building, bay) -> Optional[ModelInstance]:
        return self._cranes.get(bay_key(building, bay))

    def place_crane_on(self, building, bay, sensor_lonlat) -> Optional[ModelInstance]:
        """Project the sensor's ground position onto both cached rails and place (or move) the crane."""
        key = bay_key(building, bay)
        lines = self._lines.get(key)
        if not lines or len(lines) < 2 or sensor_lonlat is None:
            return None
        point = (float(sensor_lonlat[0]), float(sensor_lonlat[1]))
        p_a = geodesy.closest_point_on_line(point, lines[0])
        p_b = geodesy.closest_point_on_line(point, lines[1])
        matrix = crane_transform(p_a, p_b)

        model = self._cranes.get(key)
        if model is None or model.destroyed:
            model = self.scene.add_primitive(ModelInstance(
                uri=self.model_uri,
                model_matrix=matrix,
                tag=CraneTag(building=normalize_id(building), bay=normalize_bay(bay)),
            ))
            self._cranes[key] = model
            logger.info("crane placed", extra={"building": normalize_id(building),
                                               "bay": normalize_bay(bay)})
        else:
            model.model_matrix = matrix
            model.show = True
        self.scene.request_render()
        return model

    def remove_crane(self, building, bay) -> None:
        key = bay_key(building, bay)
        self._lines.pop(key, None)
        model = self._cranes.pop(key, None)
        if model is not None and not model.destroyed:
            self.scene.remove_primitive(model)
        self.scene.request_render()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def remove_by_building(self, building) -> None:
        bid = normalize_id(building)
        self.scene.remove_all(e for e in self.scene.of_type(RailTag) if e.tag.building == bid)
        prefix = f"{bid}::"
        for key in [k for k in self._index if k.startswith(prefix)]:
            del self._index[key]
        for key in [k for k in self._lines if k.startswith(prefix)]:
            del self._lines[key]
        for key in [k for k in self._cranes if k.startswith(prefix)]:
            self.remove_crane(bid, key.split("::", 1)[1])
        logger.info("rails removed", extra={"building": bid})

    def remove_all(self) -> None:
        self.scene.remove_all(self.scene.of_type(RailTag))
        self._index.clear()
        self._lines.clear()
        for model in self._cranes.values():
            self.scene.remove_primitive(model)
        self._cranes.clear()
        self.scene.request_render()
