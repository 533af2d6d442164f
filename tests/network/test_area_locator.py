from __future__ import annotations

from shapely.geometry import Point, box

from ntmflow.network.area_locator import AreaLocator
from ntmflow.network.domain_types import Area


def _area(area_id: str, *bounds: float) -> Area:
    return Area(id=area_id, geometry=box(*bounds))


def test_find_area_last_match_wins_on_overlap():
    first = _area("first", 0, 0, 10, 10)
    second = _area("second", 5, 5, 15, 15)

    assert AreaLocator([first, second]).find_area(Point(7, 7)).id == "second"
    assert AreaLocator([second, first]).find_area(Point(7, 7)).id == "first"
    assert AreaLocator([first, second]).find_area(Point(2, 2)).id == "first"


def test_find_area_outside_every_polygon():
    locator = AreaLocator([_area("A", 0, 0, 10, 10)])

    assert locator.find_area(Point(50, 50)) is None
    assert AreaLocator([]).find_area(Point(0, 0)) is None


def test_find_touching_is_symmetric():
    locator = AreaLocator(
        [
            _area("A", 0, 0, 10, 10),
            _area("B", 10, 0, 20, 10),
            _area("C", 15, 5, 25, 15),
            _area("D", 100, 100, 110, 110),
        ]
    )

    touching = locator.find_touching()

    assert touching == {"A": {"B"}, "B": {"A", "C"}, "C": {"B"}, "D": set()}


def test_nearby_areas_narrows_to_target_count():
    isolated = _area("iso", 0, 0, 10, 10)
    others = [_area(f"a{offset}", 10 + offset, 0, 20 + offset, 10) for offset in range(100, 1001, 100)]
    locator = AreaLocator([isolated, *others])

    nearby = locator.nearby_areas(isolated, max_distance=1000.0, target_count=2)

    assert [area.id for area in nearby] == ["a100", "a200"]


def test_nearby_areas_respects_max_distance():
    isolated = _area("iso", 0, 0, 10, 10)
    locator = AreaLocator([isolated, _area("near", 50, 0, 60, 10), _area("far", 9000, 0, 9010, 10)])

    nearby = locator.nearby_areas(isolated, max_distance=8000.0, target_count=6)

    assert [area.id for area in nearby] == ["near"]
