"""
SensorPlacementEngine: point markers mounted on column faces, plus halos.

Markers are never patched. Every refresh removes all of them and rebuilds
from a fresh sensor query against the columns currently in the scene.
"""
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from columnsync.config import (
    BLINK_DURATION_S,
    BLINK_INTERVAL_S,
    COLORS,
    HALO_RADIUS,
    SENSOR_N,
    SENSOR_OFFSET,
    SENSOR_RADIUS,
)
from columnsync.models.entities import HaloTag, PointGeometry, RenderEntity, SensorTag
from columnsync.models.schemas import SensorRecord
from columnsync.services import geodesy
from columnsync.services.blink import HaloBlink, Scheduler
from columnsync.services.column_index import ColumnIndex, ColumnShape
from columnsync.services.errors import normalize_id
from columnsync.services.feature_service import FeatureService, SensorApi
from columnsync.services.perf_monitor import timed_async
from columnsync.services.scene import Scene

logger = logging.getLogger("columnsync.sensors")


@dataclass
class SensorPlacement:
    position: np.ndarray          # ECEF
    lonlat: tuple                 # lon, lat, height
    outward: np.ndarray           # unit ECEF vector away from the footprint
    heading: float
    orientation: tuple


@dataclass
class SensorLocation:
    sensor_id: str
    column: str
    building: str
    edge_index: int


def sensor_entity_id(column, sensor_id) -> str:
    return f"sensor:{normalize_id(column)}:{sensor_id}"


def halo_entity_id(sensor_id) -> str:
    return f"halo:{sensor_id}"


def place_on_edge(ring: List[tuple], edge_index: int, height: float,
                  n: int = SENSOR_N, offset: float = SENSOR_OFFSET) -> Optional[SensorPlacement]:
    """
    Position and outward orientation of a marker on one face of a column.

    The marker sits at the edge midpoint, ``height / n`` above ground. The
    face normal is ``edge × up``, flipped for clockwise rings so it always
    points away from the interior. Returns None for a zero-length edge.
    """
    z = height / n
    mid = geodesy.edge_midpoint(ring, edge_index)
    mid_pos = geodesy.to_ecef(mid[0], mid[1], z)
    east, north, up = geodesy.enu_basis(mid[0], mid[1])

    a, b = geodesy.edge_vertices(ring, edge_index)
    edge = geodesy.to_ecef(b[0], b[1], z) - geodesy.to_ecef(a[0], a[1], z)
    length = float(np.linalg.norm(edge))
    if length == 0.0:
        return None
    outward = np.cross(edge / length, up)
    outward /= np.linalg.norm(outward)
    if geodesy.signed_area(ring) < 0:
        outward = -outward

    position = mid_pos + outward * offset
    lon, lat, h = geodesy.from_ecef(position) if offset else (mid[0], mid[1], z)
    heading = math.atan2(float(outward @ east), float(outward @ north))
    return SensorPlacement(
        position=position,
        lonlat=(lon, lat, h),
        outward=outward,
        heading=heading,
        orientation=geodesy.heading_quaternion(lon, lat, heading),
    )


class SensorPlacementEngine:
    def __init__(self, scene: Scene, columns: ColumnIndex, sensors: SensorApi,
                 features: FeatureService, scheduler: Scheduler):
        self.scene = scene
        self.columns = columns
        self.sensors = sensors
        self.features = features
        self.scheduler = scheduler
        self.visible = False
        self.sensor_ids = set()
        self.halo_ids = set()
        self._blinks: Dict[str, HaloBlink] = {}
        self._focused: Dict[str, tuple] = {}     # column id -> (entity, original colour)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def place_for_column(self, shape: ColumnShape, records: List[SensorRecord],
                         n: int = SENSOR_N) -> int:
        placed = 0
        for rec in records:
            eid = sensor_entity_id(shape.column, rec.sensor_id)
            if self.scene.get_by_id(eid) is not None:
                continue
            p = place_on_edge(shape.ring, rec.edge_index, shape.height, n=n)
            if p is None:
                logger.warning(f"degenerate edge {rec.edge_index}, sensor skipped",
                               extra={"column": shape.column, "sensor_id": rec.sensor_id})
                continue
            self.scene.add(RenderEntity(
                id=eid,
                geometry=PointGeometry(
                    position=tuple(float(v) for v in p.position),
                    lonlat=p.lonlat,
                    heading=p.heading,
                    orientation=p.orientation,
                    radius=SENSOR_RADIUS,
                ),
                tag=SensorTag(sensor_id=rec.sensor_id, column=shape.column,
                              edge_index=rec.edge_index),
                color=COLORS["sensor"],
            ))
            self.sensor_ids.add(eid)
            placed += 1
        return placed

    @timed_async
    async def show_for_current_columns(self, n: int = SENSOR_N) -> int:
        """Rebuild every marker for the columns currently in the scene. Returns the marker count."""
        shapes = self.columns.collect()
        self.remove_sensors_only()

        records = await self.sensors.list_sensors_by_columns(shapes.keys())
        grouped = defaultdict(list)
        for rec in records:
            grouped[normalize_id(rec.column_id)].append(rec)

        for column, recs in grouped.items():
            shape = shapes.get(column)
            if shape is not None:
                self.place_for_column(shape, recs, n=n)

        self.visible = bool(self.sensor_ids)
        self.scene.request_render()
        logger.info(f"{len(self.sensor_ids)} sensor marker(s) on {len(shapes)} column(s)")
        return len(self.sensor_ids)

    def remove_sensors_only(self) -> int:
        removed = self.scene.remove_all(
            e for e in (self.scene.get_by_id(i) for i in self.sensor_ids) if e is not None
        )
        self.sensor_ids.clear()
        return removed

    def remove_all(self) -> None:
        self.stop_all_blinks()
        for sensor_id in [i.split(":", 1)[1] for i in self.halo_ids]:
            self.remove_halo(sensor_id)
        self.remove_sensors_only()
        self._restore_focus()
        self.visible = False
        self.scene.request_render()

    def sensor_entity(self, sensor_id: str) -> Optional[RenderEntity]:
        suffix = f":{sensor_id}"
        for eid in self.sensor_ids:
            if eid.endswith(suffix):
                return self.scene.get_by_id(eid)
        return None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def lookup_by_sensor(self, sensor_id: str) -> Optional[SensorLocation]:
        """sensor → (column, building); None when either hop finds nothing."""
        detail = await self.sensors.get_sensor_detail(sensor_id)
        if detail is None:
            return None
        building = await self.features.get_building_by_column(detail.column_id)
        if not building:
            return None
        return SensorLocation(
            sensor_id=detail.sensor_id,
            column=normalize_id(detail.column_id),
            building=building,
            edge_index=detail.edge_index,
        )

    # ------------------------------------------------------------------
    # Halo + blink
    # ------------------------------------------------------------------

    def add_halo(self, sensor_id: str, radius: float = HALO_RADIUS) -> Optional[RenderEntity]:
        hid = halo_entity_id(sensor_id)
        self._stop_blink(sensor_id)
        self.scene.remove(self.scene.get_by_id(hid))
        self.halo_ids.discard(hid)

        sensor = self.sensor_entity(sensor_id)
        if sensor is None:
            return None
        g = sensor.geometry
        halo = self.scene.add(RenderEntity(
            id=hid,
            geometry=PointGeometry(position=g.position, lonlat=g.lonlat, heading=g.heading,
                                   orientation=g.orientation, radius=radius),
            tag=HaloTag(sensor_id=sensor_id),
            color=COLORS["halo"],
        ))
        self.halo_ids.add(hid)
        self.scene.request_render()
        return halo

    def remove_halo(self, sensor_id: str) -> None:
        hid = halo_entity_id(sensor_id)
        self._stop_blink(sensor_id)
        self.scene.remove(self.scene.get_by_id(hid))
        self.halo_ids.discard(hid)
        self.scene.request_render()

    def halo(self, sensor_id: str) -> Optional[RenderEntity]:
        return self.scene.get_by_id(halo_entity_id(sensor_id))

    def blink_halo(self, sensor_id: str, duration_s: float = BLINK_DURATION_S,
                   interval_s: float = BLINK_INTERVAL_S) -> Optional[HaloBlink]:
        halo = self.halo(sensor_id) or self.add_halo(sensor_id)
        if halo is None:
            return None
        self._stop_blink(sensor_id)

        def set_show(show: bool) -> None:
            halo.show = show
            self.scene.request_render()

        def finished(blink: HaloBlink) -> None:
            if self._blinks.get(sensor_id) is blink:
                del self._blinks[sensor_id]

        blink = HaloBlink(self.scheduler, set_show, duration_s, interval_s, on_finish=finished)
        self._blinks[sensor_id] = blink
        return blink.start()

    def active_blink(self, sensor_id: str) -> Optional[HaloBlink]:
        return self._blinks.get(sensor_id)

    def _stop_blink(self, sensor_id: str) -> None:
        blink = self._blinks.pop(sensor_id, None)
        if blink is not None:
            blink.cancel()

    def stop_all_blinks(self) -> None:
        for sensor_id in list(self._blinks):
            self._stop_blink(sensor_id)

    # ------------------------------------------------------------------
    # Search emphasis
    # ------------------------------------------------------------------

    def colorize_searched(self, sensor_id: str, column) -> None:
        """All markers white, the searched one yellow, its column in the focus colour."""
        for eid in self.sensor_ids:
            ent = self.scene.get_by_id(eid)
            if ent is not None:
                ent.color = COLORS["sensor"]

        column = normalize_id(column)
        shape = self.columns.collect().get(column)
        if shape is not None:
            if column not in self._focused:
                self._focused[column] = (shape.entity, shape.entity.color)
            shape.entity.color = COLORS["column_focus"]

        target = self.scene.get_by_id(sensor_entity_id(column, sensor_id))
        if target is not None:
            target.color = COLORS["sensor_focus"]
        self.scene.request_render()

    def _restore_focus(self) -> None:
        for ent, color in self._focused.values():
            ent.color = color
        self._focused.clear()
