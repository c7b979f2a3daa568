"""
Render entity model shared by every engine.

Each entity carries one geometry variant and one tag variant. Tags replace the
loose metadata bags of a scene graph: a tag type is a layer, and it holds only
the fields that layer needs. Consumers dispatch on the tag type.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np

from columnsync.config import LAYERS

LonLat = Tuple[float, float]
Rgba = Tuple[int, int, int, int]


# ---------------------------------------------------------------------------
# Tags (one per layer kind)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnTag:
    building: str
    column: str


@dataclass(frozen=True)
class HighlightTag:
    building: str
    column: str                          # the column the problem was reported on
    bay: Optional[str] = None            # bay used to scope resolution
    source_column: Optional[str] = None  # face the highlight was drawn from (chained restore)


@dataclass(frozen=True)
class SensorTag:
    sensor_id: str
    column: str
    edge_index: int


@dataclass(frozen=True)
class HaloTag:
    sensor_id: str


@dataclass(frozen=True)
class RailTag:
    building: str
    bay: str
    line: str


@dataclass(frozen=True)
class CraneTag:
    building: str
    bay: str


EntityTag = Union[ColumnTag, HighlightTag, SensorTag, HaloTag, RailTag, CraneTag]


def layer_of(tag: EntityTag) -> str:
    if isinstance(tag, ColumnTag):
        return LAYERS["COLUMN"]
    if isinstance(tag, HighlightTag):
        return LAYERS["HIGHLIGHT"]
    if isinstance(tag, SensorTag):
        return LAYERS["SENSOR"]
    if isinstance(tag, HaloTag):
        return LAYERS["HALO"]
    if isinstance(tag, RailTag):
        return LAYERS["RAIL"]
    if isinstance(tag, CraneTag):
        return LAYERS["CRANE"]
    raise TypeError(f"unknown entity tag: {type(tag).__name__}")


def tag_to_dict(tag: EntityTag) -> dict:
    """Serialisable view of a tag (used by pick results and the info panel)."""
    if isinstance(tag, ColumnTag):
        fields = {"building": tag.building, "column": tag.column}
    elif isinstance(tag, HighlightTag):
        fields = {
            "building": tag.building,
            "column": tag.column,
            "bay": tag.bay,
            "source_column": tag.source_column,
        }
    elif isinstance(tag, SensorTag):
        fields = {"sensor_id": tag.sensor_id, "column": tag.column, "edge_index": tag.edge_index}
    elif isinstance(tag, HaloTag):
        fields = {"sensor_id": tag.sensor_id}
    elif isinstance(tag, RailTag):
        fields = {"building": tag.building, "bay": tag.bay, "line": tag.line}
    elif isinstance(tag, CraneTag):
        fields = {"building": tag.building, "bay": tag.bay}
    else:
        raise TypeError(f"unknown entity tag: {type(tag).__name__}")
    return {"layer": layer_of(tag), **fields}


# ---------------------------------------------------------------------------
# Geometry variants
# ---------------------------------------------------------------------------

@dataclass
class PolygonGeometry:
    ring: List[LonLat]                   # open ring, lon/lat degrees
    extruded_height: float
    height: float = 0.0


@dataclass
class PointGeometry:
    position: Tuple[float, float, float]         # ECEF metres
    lonlat: Tuple[float, float, float]           # lon, lat (deg), height (m)
    heading: float = 0.0                         # radians, ENU
    orientation: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)  # x, y, z, w
    radius: float = 0.3


@dataclass
class CorridorGeometry:
    line: List[LonLat]
    width: float
    height: float
    extruded_height: float


Geometry = Union[PolygonGeometry, PointGeometry, CorridorGeometry]


_ids = itertools.count(1)


def next_entity_id(prefix: str = "entity") -> str:
    return f"{prefix}-{next(_ids)}"


@dataclass(eq=False)
class RenderEntity:
    id: str
    geometry: Geometry
    tag: EntityTag
    show: bool = True
    color: Optional[Rgba] = None

    @property
    def layer(self) -> str:
        return layer_of(self.tag)


@dataclass(eq=False)
class ModelInstance:
    """A glTF model primitive placed by a 4x4 (ECEF, row-major) transform."""
    uri: str
    model_matrix: np.ndarray
    tag: CraneTag
    show: bool = True
    destroyed: bool = field(default=False)
