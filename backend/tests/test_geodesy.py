"""
test_geodesy.py: WGS84 helpers.

Tests cover:
  - ring helpers (closing vertex, winding, edge wrap, centroid)
  - closest_point_on_line: interior projection and endpoint clamping
  - bearing / planar distance sanity
  - heading rotation, quaternion and 4x4 model matrix
"""

import math

import numpy as np
import pytest

from columnsync.services import geodesy

LINE = [(127.0, 37.0), (127.001, 37.0)]


# ===========================================================================
# Class 1: rings
# ===========================================================================

class TestRings:

    def test_open_ring_drops_closing_vertex(self):
        ring = geodesy.open_ring([[0, 0], [1, 0], [1, 1], [0, 0]])
        assert ring == [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0)]

    def test_open_ring_keeps_already_open_ring(self):
        assert len(geodesy.open_ring([[0, 0], [1, 0], [1, 1]])) == 3

    def test_signed_area_sign_follows_winding(self):
        ccw = [(0, 0), (1, 0), (1, 1), (0, 1)]
        assert geodesy.signed_area(ccw) == pytest.approx(1.0)
        assert geodesy.signed_area(list(reversed(ccw))) == pytest.approx(-1.0)

    def test_edge_index_is_taken_modulo_ring_length(self):
        ring = [(0, 0), (1, 0), (1, 1), (0, 1)]
        assert geodesy.edge_vertices(ring, 3) == ((0, 1), (0, 0))
        assert geodesy.edge_vertices(ring, 5) == geodesy.edge_vertices(ring, 1)

    def test_centroid_is_vertex_average(self):
        assert geodesy.ring_centroid([(0, 0), (2, 0), (2, 2), (0, 2)]) == (1.0, 1.0)


# ===========================================================================
# Class 2: lines
# ===========================================================================

class TestClosestPoint:

    def test_interior_projection_lands_on_the_line(self):
        lon, lat = geodesy.closest_point_on_line((127.0005, 37.0001), LINE)
        assert lon == pytest.approx(127.0005, abs=1e-7)
        assert lat == pytest.approx(37.0, abs=1e-7)

    def test_past_the_end_clamps_to_last_vertex(self):
        assert geodesy.closest_point_on_line((127.002, 37.0001), LINE) == (127.001, 37.0)

    def test_before_the_start_clamps_to_first_vertex(self):
        assert geodesy.closest_point_on_line((126.999, 36.9999), LINE) == (127.0, 37.0)

    def test_nearest_segment_wins(self):
        line = [(127.0, 37.0), (127.001, 37.0), (127.001, 37.001)]
        lon, lat = geodesy.closest_point_on_line((127.0012, 37.0005), line)
        assert lon == pytest.approx(127.001, abs=1e-7)
        assert lat == pytest.approx(37.0005, abs=1e-7)

    def test_degenerate_line_rejected(self):
        with pytest.raises(ValueError):
            geodesy.closest_point_on_line((127.0, 37.0), [(127.0, 37.0)])


class TestBearingDistance:

    def test_bearing_east_and_north(self):
        assert geodesy.bearing((127.0, 37.0), (127.001, 37.0)) == pytest.approx(math.pi / 2, abs=1e-3)
        assert geodesy.bearing((127.0, 37.0), (127.0, 37.001)) == pytest.approx(0.0, abs=1e-9)

    def test_planar_distance_of_small_offset(self):
        # 0.0001 deg of latitude is roughly 11.1 m
        assert geodesy.planar_distance((127.0, 37.0), (127.0, 37.0001)) == pytest.approx(11.1, abs=0.1)

    def test_local_frame_round_trip(self):
        origin = (127.0, 37.0)
        en = geodesy.to_local(origin, [(127.0003, 37.0002)])
        back = geodesy.from_local(origin, en)[0]
        assert back == pytest.approx((127.0003, 37.0002), abs=1e-9)


# ===========================================================================
# Class 3: orientation
# ===========================================================================

class TestOrientation:

    def test_identity_matrix_quaternion(self):
        assert geodesy.quaternion_from_matrix(np.eye(3)) == pytest.approx((0.0, 0.0, 0.0, 1.0))

    def test_heading_rotation_is_proper(self):
        r = geodesy.heading_rotation(127.0, 37.0, 0.7)
        assert np.allclose(r.T @ r, np.eye(3))
        assert np.linalg.det(r) == pytest.approx(1.0)

    def test_heading_quaternion_is_unit(self):
        q = geodesy.heading_quaternion(127.0, 37.0, 2.5)
        assert math.sqrt(sum(v * v for v in q)) == pytest.approx(1.0)

    def test_model_matrix_translation_and_scale(self):
        m = geodesy.model_matrix(127.0, 37.0, 10.5, 0.3, sx=1.0, sy=2.0, sz=1.0)
        assert np.allclose(m[:3, 3], geodesy.to_ecef(127.0, 37.0, 10.5))
        assert np.linalg.norm(m[:3, 1]) == pytest.approx(2.0)
        assert np.linalg.norm(m[:3, 0]) == pytest.approx(1.0)
        assert list(m[3]) == [0.0, 0.0, 0.0, 1.0]
