"""Spatial queries over area polygons."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from shapely.errors import GEOSException
from shapely.geometry import Point, box
from shapely.strtree import STRtree

from .domain_types import Area

logger = logging.getLogger(__name__)

# Smallest search radius (m) when narrowing the nearby-area envelope.
_MIN_SEARCH_DISTANCE = 0.1
_NARROWING_FACTOR = 0.8


class AreaLocator:
    """Matches points to areas and finds neighbouring areas."""

    def __init__(self, areas: Sequence[Area]):
        self._areas: List[Area] = []
        for area in areas:
            if area.geometry is None or area.geometry.is_empty:
                logger.warning("Area %s has no geometry; it is ignored by the locator", area.id)
                continue
            self._areas.append(area)
        self._sindex = STRtree([area.geometry for area in self._areas]) if self._areas else None

    @property
    def areas(self) -> List[Area]:
        return list(self._areas)

    def find_area(self, point: Point) -> Optional[Area]:
        """Return the area covering ``point``.

        When polygons overlap the area that comes last in input order wins.
        """
        if point is None or point.is_empty or self._sindex is None:
            return None
        candidate_idx = sorted(int(idx) for idx in self._sindex.query(point, predicate="intersects"))
        match: Optional[Area] = None
        for idx in candidate_idx:
            area = self._areas[idx]
            if area.geometry.covers(point):
                match = area
        return match

    def find_touching(self) -> Dict[str, set]:
        """Pairwise adjacency of all areas keyed by area id.

        Pairs that fail the GEOS topology test are treated as not touching.
        """
        touching: Dict[str, set] = {area.id: set() for area in self._areas}
        bounds = [area.geometry.bounds for area in self._areas]
        for i, first in enumerate(self._areas):
            min_x1, min_y1, max_x1, max_y1 = bounds[i]
            for j in range(i + 1, len(self._areas)):
                min_x2, min_y2, max_x2, max_y2 = bounds[j]
                if min_x2 > max_x1 or max_x2 < min_x1 or min_y2 > max_y1 or max_y2 < min_y1:
                    continue
                second = self._areas[j]
                try:
                    adjacent = first.geometry.touches(second.geometry) or first.geometry.intersects(
                        second.geometry
                    )
                except GEOSException as exc:
                    logger.warning(
                        "Topology test failed between areas %s and %s: %s", first.id, second.id, exc
                    )
                    continue
                if adjacent:
                    touching[first.id].add(second.id)
                    touching[second.id].add(first.id)
        return touching

    def nearby_areas(
        self, area: Area, *, max_distance: float = 8000.0, target_count: int = 6
    ) -> List[Area]:
        """Areas within ``max_distance`` metres of ``area``, closest first.

        The search envelope shrinks in 20% steps while more than ``target_count``
        candidates remain.
        """
        if self._sindex is None:
            return []
        distance = max_distance
        candidates = self._query_envelope(area, distance)
        while len(candidates) > target_count:
            narrowed = distance * _NARROWING_FACTOR
            if narrowed < _MIN_SEARCH_DISTANCE:
                break
            reduced = self._query_envelope(area, narrowed)
            if not reduced:
                break
            distance = narrowed
            candidates = reduced
        centroid = area.centroid
        return sorted(candidates, key=lambda other: (other.geometry.distance(centroid), other.id))

    def _query_envelope(self, area: Area, distance: float) -> List[Area]:
        min_x, min_y, max_x, max_y = area.geometry.bounds
        envelope = box(min_x - distance, min_y - distance, max_x + distance, max_y + distance)
        indices = sorted(int(idx) for idx in self._sindex.query(envelope, predicate="intersects"))
        return [self._areas[idx] for idx in indices if self._areas[idx].id != area.id]


__all__ = ["AreaLocator"]
