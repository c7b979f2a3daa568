"""
Sync engine configuration: single source of truth for layer tags, geometry
defaults, blink timing and collaborator endpoints.

Import from here in all engines and routes rather than hardcoding values.
Endpoints can be overridden through environment variables (``.env`` is loaded
by ``columnsync.main`` at startup).
"""
from __future__ import annotations

import os


# ── Layer tags ────────────────────────────────────────────────────────────────
# Every render entity carries exactly one of these via its tag type.
LAYERS: dict[str, str] = {
    "COLUMN":    "columns",
    "HIGHLIGHT": "problemHighlight",
    "SENSOR":    "bleSensor",
    "HALO":      "sensorHalo",
    "RAIL":      "rail",
    "CRANE":     "crane",
}


# ── Geometry defaults (metres) ────────────────────────────────────────────────

EXTRUDED_HEIGHT: float = 10.0        # grey column height
HIGHLIGHT_HEIGHT: float = 10.0       # red highlight height
JOINT_BUFFER_M: float = 0.5          # buffer around the two-face joint region

SENSOR_RADIUS: float = 0.3
SENSOR_N: int = 3                    # sensors sit at column height / N
SENSOR_OFFSET: float = 0.0           # outward distance from the face (0 = flush)
HALO_RADIUS: float = 1.0

RAIL_BASE_HEIGHT: float = 10.0
RAIL_WIDTH_M: float = 1.0
RAIL_THICKNESS: float = 0.5

CRANE_HEIGHT: float = 10.5           # model origin height (fixed)
CRANE_BASE_SCALE: float = 1.0
CRANE_NATIVE_SPAN_M: float = 30.0    # span of the source glTF model
CRANE_HEADING_OFFSET_DEG: float = 90.0


# ── Halo blink ────────────────────────────────────────────────────────────────

BLINK_DURATION_S: float = 5.0
BLINK_INTERVAL_S: float = 0.4


# ── Colours (RGBA bytes) ──────────────────────────────────────────────────────

COLORS: dict[str, tuple[int, int, int, int]] = {
    "column":         (0, 0, 205, 255),      # medium blue
    "column_focus":   (0, 0, 255, 255),
    "highlight":      (255, 0, 0, 255),
    "sensor":         (255, 255, 255, 255),
    "sensor_focus":   (255, 255, 0, 255),
    "halo":           (255, 102, 102, 255),
    "rail":           (0, 0, 205, 255),
}


# ── User notices ──────────────────────────────────────────────────────────────

ALERT_MIN_INTERVAL_S: float = 1.2    # at most one user alert per window
NOTICE_BACKLOG: int = 50

DEFAULT_USER_MESSAGE = "Something went wrong."
MSG_SENSOR_NOT_FOUND = "Sensor not found."
MSG_SENSOR_MAPPING = "Could not map the sensor to a column and building."
MSG_SENSOR_FETCH = "Sensor lookup failed."
MSG_INVALID_SENSOR_ID = "Sensor id must be numeric."
MSG_CAUSE_REQUIRED = "A resolution cause is required."


# ── Feature service (WFS) ─────────────────────────────────────────────────────

FEATURE_SERVICE_URL: str = os.getenv("FEATURE_SERVICE_URL", "http://localhost:8080/geoserver")
FEATURE_WORKSPACE: str = os.getenv("FEATURE_WORKSPACE", "plant_map")
COLUMN_TYPENAME: str = os.getenv("COLUMN_TYPENAME", f"{FEATURE_WORKSPACE}:polygon_data")
RAIL_TYPENAME: str = os.getenv("RAIL_TYPENAME", f"{FEATURE_WORKSPACE}:rail_line")
FEATURE_SRS: str = os.getenv("FEATURE_SRS", "EPSG:4326")
WFS_VERSION = "1.0.0"


# ── Sensor / worker / audit REST collaborator ─────────────────────────────────

SENSOR_API_URL: str = os.getenv("SENSOR_API_URL", "http://localhost:8081")
API_PATHS: dict[str, str] = {
    "sensors_by_columns": "/api/ble/by_pillars",
    "sensor_detail":      "/api/ble/detail",
    "worker_info":        "/api/worker/{building}",
    "check_log":          "/api/check_log",
}
HTTP_TIMEOUT_S: float = float(os.getenv("HTTP_TIMEOUT_S", "10"))


# ── Models ────────────────────────────────────────────────────────────────────

CRANE_MODEL_URI: str = os.getenv("CRANE_MODEL_URI", "/static/models/overhead_crane.glb")


# ── Audit log timestamps ──────────────────────────────────────────────────────

AUDIT_TZ_NAME = "Asia/Seoul"
AUDIT_UTC_OFFSET_H = 9              # KST, no daylight saving
AUDIT_TIME_FORMAT = "%Y.%m.%d.%H.%M.%S"
PANEL_TIME_FORMAT = "%Y-%m-%d %H:%M"
