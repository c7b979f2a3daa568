"""
Annotation layer: floating info panels anchored to world positions.

One panel per sensor id. Panels carry what the operator sees next to a
reported column (when, building/bay, sensor, assigned driver and manager)
and accept the free-text cause that closes the report in the audit log.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from columnsync.config import (
    AUDIT_TIME_FORMAT,
    AUDIT_TZ_NAME,
    AUDIT_UTC_OFFSET_H,
    MSG_CAUSE_REQUIRED,
    PANEL_TIME_FORMAT,
)
from columnsync.models.schemas import CheckLogEntry, WorkerInfo
from columnsync.services.errors import InvalidInputError, normalize_id
from columnsync.services.feature_service import SensorApi

logger = logging.getLogger("columnsync.annotations")

KST = timezone(timedelta(hours=AUDIT_UTC_OFFSET_H), AUDIT_TZ_NAME)

# (lon, lat, height) -> (x, y) screen position, or None when off screen
Projector = Callable[[Tuple[float, float, float]], Optional[Tuple[float, float]]]


def audit_time(ts: datetime) -> str:
    return ts.astimezone(KST).strftime(AUDIT_TIME_FORMAT)


def panel_time(ts: datetime) -> str:
    return ts.astimezone(KST).strftime(PANEL_TIME_FORMAT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AnnotationPanel:
    sensor_id: str
    building: str
    bay: str
    anchor: Optional[Tuple[float, float, float]]
    highlighted_at: datetime
    worker: Optional[WorkerInfo] = None
    screen: Optional[Tuple[float, float]] = None
    visible: bool = False
    submitted: bool = False

    def as_dict(self) -> dict:
        w = self.worker
        return {
            "sensor_id": self.sensor_id,
            "building": self.building,
            "building_name": w.name if w else None,
            "bay": self.bay,
            "when": panel_time(self.highlighted_at),
            "driver": w.driver if w else None,
            "driver_id": w.driver_id if w else None,
            "driver_phone": w.driver_phone if w else None,
            "manager": w.manager if w else None,
            "manager_id": w.manager_id if w else None,
            "manager_phone": w.manager_phone if w else None,
            "anchor": list(self.anchor) if self.anchor else None,
            "screen": list(self.screen) if self.screen else None,
            "visible": self.visible,
            "submitted": self.submitted,
        }


@dataclass
class AnnotationLayer:
    sensors: SensorApi
    clock: Callable[[], datetime] = _utcnow
    panels: Dict[str, AnnotationPanel] = field(default_factory=dict)

    def show_for_highlight(self, anchor, building, bay, sensor_id,
                           highlighted_at: Optional[datetime] = None) -> AnnotationPanel:
        """Open (or replace) the panel for ``sensor_id``."""
        sid = str(sensor_id)
        panel = AnnotationPanel(
            sensor_id=sid,
            building=normalize_id(building),
            bay=bay or "",
            anchor=tuple(anchor) if anchor is not None else None,
            highlighted_at=highlighted_at or self.clock(),
        )
        self.panels[sid] = panel
        return panel

    async def enrich(self, sensor_id) -> Optional[WorkerInfo]:
        """Attach worker info for the panel's building; a failed lookup leaves the panel as is."""
        panel = self.panels.get(str(sensor_id))
        if panel is None:
            return None
        worker = await self.sensors.get_worker_info(panel.building)
        # the panel may have been cleared or replaced while awaiting
        if worker is not None and self.panels.get(panel.sensor_id) is panel:
            panel.worker = worker
        return worker

    def clear_for(self, sensor_id) -> bool:
        return self.panels.pop(str(sensor_id), None) is not None

    def get(self, sensor_id) -> Optional[AnnotationPanel]:
        return self.panels.get(str(sensor_id))

    def reposition(self, project: Projector) -> List[AnnotationPanel]:
        """Re-anchor every panel; ones whose anchor does not project are hidden."""
        for panel in self.panels.values():
            xy = project(panel.anchor) if panel.anchor is not None else None
            if xy is None or not all(math.isfinite(v) for v in xy):
                panel.screen = None
                panel.visible = False
            else:
                panel.screen = (float(xy[0]), float(xy[1]))
                panel.visible = True
        return list(self.panels.values())

    async def submit_cause(self, sensor_id, cause: str) -> Optional[CheckLogEntry]:
        """
        Write the audit entry closing this panel's report.

        Raises ``InvalidInputError`` on an empty cause and ``LookupError`` when
        no panel is open for the sensor. Returns None if the write failed.
        """
        text = (cause or "").strip()
        if not text:
            raise InvalidInputError(MSG_CAUSE_REQUIRED)
        panel = self.panels.get(str(sensor_id))
        if panel is None:
            raise LookupError(f"no panel open for sensor {sensor_id}")

        worker = panel.worker
        entry = CheckLogEntry(
            date=audit_time(panel.highlighted_at),
            manager_id=(worker.manager_id if worker else None) or "",
            worker_id=(worker.driver_id if worker else None) or "",
            bldg_id=panel.building,
            ble_id=panel.sensor_id,
            check_content=text,
            check_time=audit_time(self.clock()),
        )
        if not await self.sensors.write_check_log(entry):
            return None
        panel.submitted = True
        return entry
