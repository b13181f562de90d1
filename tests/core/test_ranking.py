# tests/core/test_ranking.py
"""
Tests for distance ranking.
"""

from __future__ import annotations

import pytest

from src.core.matching.models import DriverCandidate
from src.core.matching.ranking import haversine_km, rank_by_distance

JAKARTA = (-6.2088, 106.8456)


def candidate(driver_id: str, lat: float, lon: float, **kwargs) -> DriverCandidate:
    return DriverCandidate(driver_id=driver_id, latitude=lat, longitude=lon, **kwargs)


class TestHaversine:

    def test_same_point_is_zero(self) -> None:
        assert haversine_km(*JAKARTA, *JAKARTA) == 0.0

    def test_one_degree_of_latitude(self) -> None:
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.01)

    def test_symmetric(self) -> None:
        a = haversine_km(-6.2088, 106.8456, -6.1751, 106.8650)
        b = haversine_km(-6.1751, 106.8650, -6.2088, 106.8456)
        assert a == pytest.approx(b)


class TestRankByDistance:

    def test_jakarta_nearest_first_and_outside_radius_dropped(self) -> None:
        drivers = [
            candidate("far", -6.3000, 106.8456),
            candidate("mid", -6.2150, 106.8456),
            candidate("near", -6.2100, 106.8460),
        ]

        ranked = rank_by_distance(*JAKARTA, drivers, radius_km=1.0)

        assert [c.driver_id for c in ranked] == ["near", "mid"]
        assert ranked[0].distance_km < ranked[1].distance_km

    def test_distance_rounded_to_two_decimals(self) -> None:
        driver = candidate("d1", -6.2150, 106.8490)
        exact = haversine_km(*JAKARTA, driver.latitude, driver.longitude)

        ranked = rank_by_distance(*JAKARTA, [driver], radius_km=5.0)

        assert ranked[0].distance_km == round(exact, 2)

    def test_filter_uses_full_precision(self) -> None:
        driver = candidate("d1", -6.2150, 106.8490)
        exact = haversine_km(*JAKARTA, driver.latitude, driver.longitude)

        assert rank_by_distance(*JAKARTA, [driver], radius_km=exact) != []
        assert rank_by_distance(*JAKARTA, [driver], radius_km=exact - 1e-9) == []

    def test_ties_broken_by_driver_id(self) -> None:
        drivers = [
            candidate("b", -6.2100, 106.8456),
            candidate("a", -6.2100, 106.8456),
        ]

        ranked = rank_by_distance(*JAKARTA, drivers, radius_km=1.0)

        assert [c.driver_id for c in ranked] == ["a", "b"]

    def test_inputs_not_mutated(self) -> None:
        driver = candidate("d1", -6.2100, 106.8460, rating=4.8)

        ranked = rank_by_distance(*JAKARTA, [driver], radius_km=1.0)

        assert driver.distance_km == 0.0
        assert ranked[0].rating == 4.8
        assert ranked[0] is not driver

    def test_empty_input(self) -> None:
        assert rank_by_distance(*JAKARTA, [], radius_km=1.0) == []
