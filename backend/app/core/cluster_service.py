"""
Map clustering.

Groups geolocated properties into grid cells anchored at the south-west
corner of the viewport. Cell size shrinks as zoom grows:

    cell_degrees = CLUSTER_GRID_BASE_DEGREES / 2 ** zoom

At CLUSTER_MAX_ZOOM and above every distinct coordinate gets its own cell.
Output depends only on the input set, bounds and zoom (members are sorted by
id, sums use math.fsum), so refetching never moves pins on the map.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import List, Dict, Tuple, Optional

from app.core.config import Settings
from app.core.search_filters import MapBounds
from app.core.search_service import PropertyResult

logger = logging.getLogger(__name__)


@dataclass
class PropertyCluster:
    id: str
    lat: float
    lng: float
    count: int
    min_price: float
    avg_price: float
    max_price: float
    property_ids: List[str] = field(default_factory=list)


class ClusterService:
    def __init__(self, config: Settings):
        self.base_degrees = config.CLUSTER_GRID_BASE_DEGREES
        self.min_zoom = config.CLUSTER_MIN_ZOOM
        self.max_zoom = config.CLUSTER_MAX_ZOOM
        self.sample_size = config.CLUSTER_SAMPLE_SIZE

    def cell_size(self, zoom: int) -> Optional[float]:
        """Cell edge in degrees; None means one cell per distinct coordinate."""
        zoom = max(int(zoom), self.min_zoom)
        if zoom >= self.max_zoom:
            return None
        return self.base_degrees / (2 ** zoom)

    def _cell_for(
        self, lat: float, lng: float, bounds: MapBounds, size: Optional[float]
    ) -> Tuple:
        if size is None:
            return (lat, lng)
        return (
            int(math.floor((lat - bounds.south) / size)),
            int(math.floor((lng - bounds.west) / size)),
        )

    def cluster(
        self,
        properties: List[PropertyResult],
        bounds: MapBounds,
        zoom: int,
    ) -> List[PropertyCluster]:
        if not properties:
            return []

        size = self.cell_size(zoom)
        cells: Dict[Tuple, List[PropertyResult]] = defaultdict(list)
        skipped = 0
        for prop in properties:
            if prop.lat is None or prop.lng is None or not bounds.contains(prop.lat, prop.lng):
                skipped += 1
                continue
            cells[self._cell_for(prop.lat, prop.lng, bounds, size)].append(prop)

        if skipped:
            logger.info(f"Clustering skipped {skipped} properties outside the viewport")

        clusters = []
        for cell in sorted(cells):
            members = sorted(cells[cell], key=lambda p: p.id)
            prices = [p.price_amount for p in members]
            count = len(members)
            clusters.append(PropertyCluster(
                id=f"{int(zoom)}:" + ":".join(str(part) for part in cell),
                lat=math.fsum(p.lat for p in members) / count,
                lng=math.fsum(p.lng for p in members) / count,
                count=count,
                min_price=min(prices),
                avg_price=round(math.fsum(prices) / count, 2),
                max_price=max(prices),
                property_ids=[p.id for p in members[:self.sample_size]],
            ))

        logger.info(f"🗺️  {len(clusters)} clusters from {len(properties)} properties at zoom {zoom}")
        return clusters
