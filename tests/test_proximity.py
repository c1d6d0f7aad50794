import math

import pytest

from proximity import haversine_km, nearby, round_km
from schemas import CitizenReport

ORIGIN = (8.486071, 124.656805)


def report(id, lat, lng, **kwargs):
    return CitizenReport(id=id, latitude=lat, longitude=lng, notes="n", **kwargs)


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(*ORIGIN, *ORIGIN) == 0

    def test_one_degree_of_latitude(self):
        # 2 * pi * 6371 / 360
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)

    def test_symmetric(self):
        a = haversine_km(*ORIGIN, 8.60, 124.80)
        b = haversine_km(8.60, 124.80, *ORIGIN)
        assert a == pytest.approx(b)


class TestNearby:
    def test_close_report_included_at_both_default_radii(self):
        reports = [report("a", 8.490000, 124.660000)]

        for radius in (5, 10):
            result = nearby(reports, *ORIGIN, radius)
            assert [r.id for r in result] == ["a"]
            assert 0.4 < result[0].distance_km < 0.7

    def test_far_report_depends_on_radius(self):
        reports = [report("far", 8.60, 124.80)]

        assert nearby(reports, *ORIGIN, 10) == []
        result = nearby(reports, *ORIGIN, 25)
        assert [r.id for r in result] == ["far"]
        assert 19 < result[0].distance_km < 22

    def test_reports_without_coordinates_never_included(self):
        reports = [
            report("no-lat", None, 124.66),
            report("no-lng", 8.49, None),
            report("none", None, None),
        ]
        assert nearby(reports, *ORIGIN, math.inf) == []

    def test_zero_coordinates_are_locatable(self):
        result = nearby([report("equator", 0.0, 0.01)], 0.0, 0.0, 5)
        assert [r.id for r in result] == ["equator"]

    def test_distance_is_rounded_half_up_to_two_decimals(self):
        r = report("a", 8.52, 124.70)
        exact = haversine_km(*ORIGIN, r.latitude, r.longitude)

        result = nearby([r], *ORIGIN, 10)

        assert result[0].distance_km == math.floor(exact * 100 + 0.5) / 100

    def test_boundary_distance_is_inclusive(self):
        r = report("edge", 8.52, 124.70)
        exact = haversine_km(*ORIGIN, r.latitude, r.longitude)

        assert len(nearby([r], *ORIGIN, exact)) == 1
        assert nearby([r], *ORIGIN, exact - 1e-9) == []

    def test_input_order_preserved(self):
        reports = [
            report("mid", 8.52, 124.70),
            report("near", 8.490000, 124.660000),
            report("far", 8.60, 124.80),
        ]
        result = nearby(reports, *ORIGIN, 50)
        assert [r.id for r in result] == ["mid", "near", "far"]

    def test_other_fields_carried_through(self):
        r = report("a", 8.49, 124.66, status="investigating", location="Gate 1")
        result = nearby([r], *ORIGIN, 5)[0]
        assert result.status.value == "investigating"
        assert result.location == "Gate 1"


def test_round_km_half_up():
    assert round_km(0.125) == 0.13
    assert round_km(2.5049) == 2.5
