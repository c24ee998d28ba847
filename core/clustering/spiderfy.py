"""
Spiderfy Layout for Coincident Nodes.

Nodes that still share a position at the finest zoom are fanned out on
concentric rings around their shared center, each connected back to the
center by a leg, so every marker stays individually clickable.

Example Usage:
    from core.clustering.spiderfy import spiderfy_nodes

    expansion = index.expand_cluster(cluster)
    if expansion.spiderfy:
        legs = spiderfy_nodes(expansion.nodes, expansion.center)
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.clustering.config import SpiderConfig
from core.clustering.features import NodeRecord
from core.clustering.geometry import lat_to_y, lng_to_x, wrap_longitude

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpiderfiedNode:
    """
    A node placed on a spider leg.

    Attributes:
        node: The original record (position untouched)
        lng: Display longitude
        lat: Display latitude
        center: Shared center the leg starts from, as (lng, lat)
        ring: Ring index (0 = innermost)
        angle: Leg angle in radians (counter-clockwise from east)
    """

    node: NodeRecord
    lng: float
    lat: float
    center: Tuple[float, float]
    ring: int
    angle: float

    @property
    def offset(self) -> Tuple[float, float]:
        """Display offset from the center as (d_lng, d_lat)."""
        return (self.lng - self.center[0], self.lat - self.center[1])

    @property
    def leg(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """Leg segment from the center to the display position."""
        return (self.center, (self.lng, self.lat))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.node.id,
            "lng": self.lng,
            "lat": self.lat,
            "center": list(self.center),
            "ring": self.ring,
            "angle": self.angle,
        }


def _over_pole(lng: float, lat: float) -> Tuple[float, float]:
    """Fold a position pushed past a pole back onto the globe."""
    if lat > 90.0:
        return wrap_longitude(lng + 180.0), 180.0 - lat
    if lat < -90.0:
        return wrap_longitude(lng + 180.0), -180.0 - lat
    return lng, lat


def _ring_radius(ring: int, config: SpiderConfig) -> float:
    return config.leg_length + ring * config.ring_spacing


def _ring_capacity(ring: int, config: SpiderConfig) -> int:
    return max(1, int(math.floor(2 * math.pi * _ring_radius(ring, config) / config.foot_separation)))


def ring_sizes(count: int, config: Optional[SpiderConfig] = None) -> List[int]:
    """Number of nodes on each ring for a group of ``count`` nodes."""
    config = config or SpiderConfig()
    sizes = []
    remaining = count
    ring = 0
    while remaining > 0:
        placed = min(remaining, _ring_capacity(ring, config))
        sizes.append(placed)
        remaining -= placed
        ring += 1
    return sizes


def spider_radius(count: int, config: Optional[SpiderConfig] = None) -> float:
    """Radius of the outermost ring (0 for fewer than two nodes)."""
    config = config or SpiderConfig()
    if count < 2:
        return 0.0
    return _ring_radius(len(ring_sizes(count, config)) - 1, config)


def spiderfy_nodes(
    nodes: Sequence[NodeRecord],
    center: Tuple[float, float],
    config: Optional[SpiderConfig] = None,
) -> List[SpiderfiedNode]:
    """
    Lay out coincident nodes on concentric rings around a center.

    Inner rings are filled to capacity first and nodes are evenly spaced
    within each ring. Successive rings are rotated by half a step so legs
    do not line up. The layout depends only on input order and center.

    Args:
        nodes: Coincident node records
        center: Shared center as (lng, lat)
        config: Layout configuration

    Returns:
        One SpiderfiedNode per input node, in input order
    """
    config = config or SpiderConfig()
    center_lng, center_lat = float(center[0]), float(center[1])
    if not nodes:
        return []
    if len(nodes) == 1:
        return [
            SpiderfiedNode(
                node=nodes[0],
                lng=center_lng,
                lat=center_lat,
                center=(center_lng, center_lat),
                ring=0,
                angle=0.0,
            )
        ]

    lng_scale = 1.0 / max(math.cos(math.radians(center_lat)), config.min_cos_latitude)

    placed: List[SpiderfiedNode] = []
    start = 0
    for ring, size in enumerate(ring_sizes(len(nodes), config)):
        radius = _ring_radius(ring, config)
        step = 2 * math.pi / size
        stagger = (step / 2) * (ring % 2)
        for k in range(size):
            angle = config.start_angle + stagger + k * step
            lng, lat = _over_pole(
                center_lng + math.cos(angle) * radius * lng_scale,
                center_lat + math.sin(angle) * radius,
            )
            placed.append(
                SpiderfiedNode(
                    node=nodes[start + k],
                    lng=lng,
                    lat=lat,
                    center=(center_lng, center_lat),
                    ring=ring,
                    angle=angle,
                )
            )
        start += size

    logger.debug(f"Spiderfied {len(nodes)} nodes on {ring + 1} rings")
    return placed


def group_coincident_nodes(
    nodes: Sequence[NodeRecord],
    cell_size: float,
) -> List[List[NodeRecord]]:
    """
    Group nodes sharing a grid cell in projected space.

    Args:
        nodes: Node records
        cell_size: Cell edge in projected unit-square units

    Returns:
        Groups in order of first appearance; singletons included
    """
    if cell_size <= 0:
        raise ValueError(f"cell_size must be > 0, got {cell_size}")

    groups: Dict[Tuple[int, int], List[NodeRecord]] = {}
    for node in nodes:
        key = (
            int(math.floor(lng_to_x(node.lng) / cell_size)),
            int(math.floor(lat_to_y(node.lat) / cell_size)),
        )
        groups.setdefault(key, []).append(node)
    return list(groups.values())
