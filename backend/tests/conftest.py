"""
conftest.py: Shared pytest fixtures for the column sync test suite.

No network is touched: the feature service and the sensor REST collaborator
are replaced by in-memory fakes holding a small plant (building "003" with
columns 11-14 across bays A/B/C, building "007" with column 21), and blink
timers run on a ManualScheduler.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``columnsync.*`` imports resolve regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any columnsync imports.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from columnsync.models.schemas import SensorRecord, WorkerInfo  # noqa: E402
from columnsync.services.blink import ManualScheduler  # noqa: E402
from columnsync.services.context import build_context  # noqa: E402
from columnsync.services.errors import Notifier, normalize_bay, normalize_id, parse_column_id  # noqa: E402


# ---------------------------------------------------------------------------
# Geometry builders
# ---------------------------------------------------------------------------

BASE_LON = 127.0
BASE_LAT = 37.0
STEP = 0.0001          # ~9 m between columns
SIZE = 0.00001         # ~1 m column footprint


def square(lon, lat, size=SIZE, clockwise=False):
    """Closed GeoJSON ring; counter-clockwise unless ``clockwise``."""
    ring = [(lon, lat), (lon + size, lat), (lon + size, lat + size), (lon, lat + size)]
    if clockwise:
        ring = list(reversed(ring))
    return [list(p) for p in ring + [ring[0]]]


def face(building, cid, k, pre_bay=None, next_bay=None, pre_id=None, next_id=None, clockwise=False):
    return {
        "type": "Feature",
        "geometry": {
            "type": "Polygon",
            "coordinates": [square(BASE_LON + k * STEP, BASE_LAT, clockwise=clockwise)],
        },
        "properties": {
            "bldg_id": building,
            "id": cid,
            "pre_bay": pre_bay,
            "next_bay": next_bay,
            "pre_id": pre_id,
            "next_id": next_id,
        },
    }


def rail(building, bay, line, lat):
    return {
        "type": "Feature",
        "geometry": {
            "type": "LineString",
            "coordinates": [[BASE_LON - 2 * STEP, lat], [BASE_LON + 6 * STEP, lat]],
        },
        "properties": {"bldg_id": building, "bay": bay, "line": line},
    }


def plant_faces():
    return [
        face("003", 11, 1, "A", "A", 10, 12),
        face("003", 12, 2, "A", "B", 11, 13),
        face("003", 13, 3, "B", "B", 12, 14),
        face("003", 14, 4, "B", "C", 13, 15),
        face("007", 21, 10, "D", "D", 20, 22, clockwise=True),
    ]


def plant_rails():
    return [
        rail("003", "A", "1", BASE_LAT - 0.00005),
        rail("003", "A", "2", BASE_LAT + 0.00015),
        rail("003", "B", "1", BASE_LAT - 0.00005),
    ]


def plant_sensors():
    return [
        SensorRecord(ble_id="1001", pillar_id=12, line=0),
        SensorRecord(ble_id="1002", pillar_id=12, line=2),
        SensorRecord(ble_id="1003", pillar_id=13, line=1),
        SensorRecord(ble_id="2001", pillar_id=21, line=0),
    ]


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeFeatureService:
    """In-memory stand-in for FeatureService; records every call."""

    def __init__(self, faces=None, rails=None):
        self.faces = list(faces if faces is not None else plant_faces())
        self.rails = list(rails if rails is not None else plant_rails())
        self.calls = []

    @staticmethod
    def _bays(props):
        return {normalize_bay(props.get("pre_bay")), normalize_bay(props.get("next_bay"))}

    async def fetch_columns(self, buildings=(), bays=(), pairs=()):
        self.calls.append(("fetch_columns", tuple(buildings), tuple(bays), tuple(pairs)))
        buildings = {normalize_id(b) for b in buildings}
        bays = {normalize_bay(b) for b in bays}
        pairs = [tuple(p.split("::", 1)) for p in pairs]
        out = []
        for f in self.faces:
            p = f["properties"]
            if pairs:
                if any(normalize_id(p["bldg_id"]) == b and bay in self._bays(p) for b, bay in pairs):
                    out.append(f)
                continue
            if buildings and normalize_id(p["bldg_id"]) not in buildings:
                continue
            if bays and not (bays & self._bays(p)):
                continue
            out.append(f)
        return out

    async def fetch_building_faces(self, building):
        self.calls.append(("fetch_building_faces", building))
        return [f for f in self.faces if normalize_id(f["properties"]["bldg_id"]) == normalize_id(building)]

    async def get_column_by_id(self, building, column):
        cid = parse_column_id(column)
        self.calls.append(("get_column_by_id", building, cid))
        for f in self.faces:
            p = f["properties"]
            if normalize_id(p["bldg_id"]) == normalize_id(building) and p["id"] == cid:
                return f
        return None

    async def get_building_by_column(self, column):
        cid = parse_column_id(column)
        self.calls.append(("get_building_by_column", cid))
        for f in self.faces:
            if f["properties"]["id"] == cid:
                return normalize_id(f["properties"]["bldg_id"])
        return None

    async def fetch_rail_lines(self, building, bay):
        self.calls.append(("fetch_rail_lines", building, bay))
        return [r for r in self.rails
                if r["properties"]["bldg_id"] == building and r["properties"]["bay"] == bay]

    async def fetch_rails(self, buildings=(), pairs=()):
        self.calls.append(("fetch_rails", tuple(buildings), tuple(pairs)))
        buildings = {normalize_id(b) for b in buildings}
        pairs = {tuple(p.split("::", 1)) for p in pairs}
        out = []
        for r in self.rails:
            p = r["properties"]
            if pairs and (p["bldg_id"], p["bay"]) in pairs:
                out.append(r)
            elif not pairs and p["bldg_id"] in buildings:
                out.append(r)
        return out


class FakeSensorApi:
    """In-memory stand-in for SensorApi."""

    def __init__(self, sensors=None, workers=None, accept_writes=True):
        self.sensors = list(sensors if sensors is not None else plant_sensors())
        self.workers = workers if workers is not None else {
            "003": WorkerInfo(bldg_id="003", name="Press Shop", driver="Kim", driverId="D-7",
                              driverPhone="010-1111", manager="Lee", managerId="M-3",
                              managerPhone="010-2222"),
        }
        self.accept_writes = accept_writes
        self.check_logs = []
        self.calls = []

    async def list_sensors_by_columns(self, column_ids):
        ids = {normalize_id(c) for c in column_ids}
        self.calls.append(("list_sensors_by_columns", tuple(sorted(ids))))
        return [s for s in self.sensors if normalize_id(s.column_id) in ids]

    async def get_sensor_detail(self, sensor_id):
        self.calls.append(("get_sensor_detail", sensor_id))
        for s in self.sensors:
            if s.sensor_id == str(sensor_id):
                return s
        return None

    async def get_worker_info(self, building):
        self.calls.append(("get_worker_info", building))
        return self.workers.get(building)

    async def write_check_log(self, entry):
        self.calls.append(("write_check_log", entry.ble_id))
        if not self.accept_writes:
            return False
        self.check_logs.append(entry)
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def features():
    return FakeFeatureService()


@pytest.fixture
def sensor_api():
    return FakeSensorApi()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def notifier():
    """Notifier on a frozen clock; move time through ``notifier.clock_state["t"]``."""
    clock = {"t": 100.0}
    n = Notifier(clock=lambda: clock["t"])
    n.clock_state = clock
    return n


@pytest.fixture
def ctx(features, sensor_api, scheduler, notifier):
    """Fully wired SyncContext over the fakes."""
    return build_context(features=features, sensor_api=sensor_api,
                         scheduler=scheduler, notifier=notifier)
