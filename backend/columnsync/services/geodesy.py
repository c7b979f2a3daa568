"""
geodesy.py: WGS84 helpers for marker placement and rail projection.

Conventions:
  - Rings and lines are sequences of (lon, lat) in degrees (GeoJSON order).
  - 3D positions are ECEF metres (EPSG:4978), converted with pyproj.
  - Headings are radians in the local east/north/up frame, measured clockwise
    from north; a model's heading rotates about the negative up axis.
  - Local work (projection, distances) happens in a tangent plane centred at
    the query point so long-range geodesic distortion never enters.
"""

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
from pyproj import Geod, Transformer

LonLat = Tuple[float, float]

_TO_ECEF = Transformer.from_crs("EPSG:4979", "EPSG:4978", always_xy=True)
_FROM_ECEF = Transformer.from_crs("EPSG:4978", "EPSG:4979", always_xy=True)
_GEOD = Geod(ellps="WGS84")


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------

def to_ecef(lon: float, lat: float, height: float = 0.0) -> np.ndarray:
    x, y, z = _TO_ECEF.transform(lon, lat, height)
    return np.array([x, y, z], dtype=float)


def from_ecef(xyz: Sequence[float]) -> Tuple[float, float, float]:
    lon, lat, h = _FROM_ECEF.transform(float(xyz[0]), float(xyz[1]), float(xyz[2]))
    return lon, lat, h


def enu_basis(lon: float, lat: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Unit east, north and up vectors (ECEF) at a geodetic location."""
    lam = math.radians(lon)
    phi = math.radians(lat)
    sl, cl = math.sin(lam), math.cos(lam)
    sp, cp = math.sin(phi), math.cos(phi)
    east = np.array([-sl, cl, 0.0])
    north = np.array([-sp * cl, -sp * sl, cp])
    up = np.array([cp * cl, cp * sl, sp])
    return east, north, up


def to_local(origin: LonLat, points: Sequence[Sequence[float]]) -> np.ndarray:
    """Project lon/lat points onto the tangent plane at ``origin`` → (N, 2) east/north metres."""
    east, north, _ = enu_basis(origin[0], origin[1])
    o = to_ecef(origin[0], origin[1], 0.0)
    out = np.zeros((len(points), 2))
    for k, p in enumerate(points):
        d = to_ecef(p[0], p[1], 0.0) - o
        out[k] = (d @ east, d @ north)
    return out


def from_local(origin: LonLat, en: Sequence[Sequence[float]]) -> List[LonLat]:
    """Inverse of :func:`to_local` (height dropped)."""
    east, north, _ = enu_basis(origin[0], origin[1])
    o = to_ecef(origin[0], origin[1], 0.0)
    out = []
    for e, n in en:
        lon, lat, _ = from_ecef(o + e * east + n * north)
        out.append((lon, lat))
    return out


# ---------------------------------------------------------------------------
# Rings
# ---------------------------------------------------------------------------

def open_ring(coords: Sequence[Sequence[float]]) -> List[LonLat]:
    """(lon, lat) tuples with the duplicated GeoJSON closing vertex removed."""
    ring = [(float(c[0]), float(c[1])) for c in coords]
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring.pop()
    return ring


def signed_area(ring: Sequence[LonLat]) -> float:
    """Shoelace area in degree²: positive for counter-clockwise winding."""
    a = 0.0
    m = len(ring)
    for i in range(m):
        j = (i + 1) % m
        a += ring[i][0] * ring[j][1] - ring[j][0] * ring[i][1]
    return a / 2.0


def edge_vertices(ring: Sequence[LonLat], index: int) -> Tuple[LonLat, LonLat]:
    m = len(ring)
    i = index % m
    return ring[i], ring[(i + 1) % m]


def edge_midpoint(ring: Sequence[LonLat], index: int) -> LonLat:
    p1, p2 = edge_vertices(ring, index)
    return (p1[0] + p2[0]) / 2.0, (p1[1] + p2[1]) / 2.0


def ring_centroid(ring: Sequence[LonLat]) -> LonLat:
    """Vertex average (good enough for convex column footprints)."""
    n = len(ring)
    return sum(p[0] for p in ring) / n, sum(p[1] for p in ring) / n


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------

def closest_point_on_line(point: LonLat, line: Sequence[Sequence[float]]) -> LonLat:
    """
    Nearest point of a polyline to ``point``.

    Every segment is expressed in the tangent frame centred at ``point`` (so
    the query point is the origin), the origin is projected onto the segment
    with the parameter clamped to [0, 1], and the closest candidate wins.
    Clamped results return the original vertex untouched.
    """
    if len(line) < 2:
        raise ValueError("line needs at least two vertices")
    local = to_local(point, line)

    best: Optional[Tuple[float, int, float, np.ndarray]] = None
    for i in range(len(local) - 1):
        a, b = local[i], local[i + 1]
        ab = b - a
        denom = float(ab @ ab)
        t = 0.0 if denom == 0.0 else min(1.0, max(0.0, -float(a @ ab) / denom))
        proj = a + t * ab
        dist = float(np.hypot(proj[0], proj[1]))
        if best is None or dist < best[0]:
            best = (dist, i, t, proj)

    _, i, t, proj = best
    if t <= 0.0:
        return float(line[i][0]), float(line[i][1])
    if t >= 1.0:
        return float(line[i + 1][0]), float(line[i + 1][1])
    return from_local(point, [proj])[0]


def bearing(a: LonLat, b: LonLat) -> float:
    """Forward azimuth a → b in radians, clockwise from north."""
    fwd, _, _ = _GEOD.inv(a[0], a[1], b[0], b[1])
    return math.radians(fwd)


def planar_distance(a: LonLat, b: LonLat) -> float:
    en = to_local(a, [b])[0]
    return float(np.hypot(en[0], en[1]))


# ---------------------------------------------------------------------------
# Orientation / transforms
# ---------------------------------------------------------------------------

def heading_rotation(lon: float, lat: float, heading: float) -> np.ndarray:
    """3x3 rotation: local ENU frame turned by ``heading`` about -up."""
    east, north, up = enu_basis(lon, lat)
    enu = np.column_stack([east, north, up])
    c, s = math.cos(heading), math.sin(heading)
    rz = np.array([[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]])
    return enu @ rz


def quaternion_from_matrix(m: np.ndarray) -> Tuple[float, float, float, float]:
    """(x, y, z, w) unit quaternion of a proper rotation matrix."""
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = 2.0 * math.sqrt(trace + 1.0)
        w = 0.25 * s
        x = (m[2, 1] - m[1, 2]) / s
        y = (m[0, 2] - m[2, 0]) / s
        z = (m[1, 0] - m[0, 1]) / s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        w = (m[2, 1] - m[1, 2]) / s
        x = 0.25 * s
        y = (m[0, 1] + m[1, 0]) / s
        z = (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        w = (m[0, 2] - m[2, 0]) / s
        x = (m[0, 1] + m[1, 0]) / s
        y = 0.25 * s
        z = (m[1, 2] + m[2, 1]) / s
    else:
        s = 2.0 * math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        w = (m[1, 0] - m[0, 1]) / s
        x = (m[0, 2] + m[2, 0]) / s
        y = (m[1, 2] + m[2, 1]) / s
        z = 0.25 * s
    return float(x), float(y), float(z), float(w)


def heading_quaternion(lon: float, lat: float, heading: float) -> Tuple[float, float, float, float]:
    return quaternion_from_matrix(heading_rotation(lon, lat, heading))


def model_matrix(
    lon: float,
    lat: float,
    height: float,
    heading: float,
    sx: float = 1.0,
    sy: float = 1.0,
    sz: float = 1.0,
) -> np.ndarray:
    """4x4 ECEF placement: origin translation · heading rotation · axis scale."""
    m = np.eye(4)
    m[:3, :3] = heading_rotation(lon, lat, heading) @ np.diag([sx, sy, sz])
    m[:3, 3] = to_ecef(lon, lat, height)
    return m
