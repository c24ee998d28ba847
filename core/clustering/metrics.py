"""
Read-Only Metrics over Clusters and the Index.

Summaries computed on demand from index contents, never stored in it:
- ClusterMetrics: health distribution and locations of a cluster's nodes
- IndexMetrics: entry counts and density per zoom level
- ClusterSizeClass: visual size bucket for a marker count
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.clustering.features import NodeRecord, is_cluster
from core.clustering.geometry import BoundingBox, calculate_bounds

logger = logging.getLogger(__name__)


# Health score lower bounds (0-100 scale)
EXCELLENT_HEALTH = 80
GOOD_HEALTH = 60
WARNING_HEALTH = 40


class ClusterSizeClass(Enum):
    """Visual size bucket of a marker."""

    MEGA = "mega"  # 500+ nodes, continental scale
    LARGE = "large"  # 100-499 nodes, country scale
    MEDIUM = "medium"  # 30-99 nodes, regional scale
    SMALL = "small"  # 10-29 nodes, city scale
    MICRO = "micro"  # 3-9 nodes
    MINI = "mini"  # 2 nodes
    NODE = "node"  # single node


_SIZE_THRESHOLDS = [
    (500, ClusterSizeClass.MEGA),
    (100, ClusterSizeClass.LARGE),
    (30, ClusterSizeClass.MEDIUM),
    (10, ClusterSizeClass.SMALL),
    (3, ClusterSizeClass.MICRO),
    (2, ClusterSizeClass.MINI),
]


def size_class_for_count(count: int) -> ClusterSizeClass:
    """Size bucket for a number of nodes."""
    for minimum, size_class in _SIZE_THRESHOLDS:
        if count >= minimum:
            return size_class
    return ClusterSizeClass.NODE


# =============================================================================
# Cluster Metrics
# =============================================================================


@dataclass
class HealthDistribution:
    """Node counts per health band."""

    excellent: int = 0
    good: int = 0
    warning: int = 0
    critical: int = 0

    def add(self, health: float) -> None:
        if health >= EXCELLENT_HEALTH:
            self.excellent += 1
        elif health >= GOOD_HEALTH:
            self.good += 1
        elif health >= WARNING_HEALTH:
            self.warning += 1
        else:
            self.critical += 1

    @property
    def total(self) -> int:
        return self.excellent + self.good + self.warning + self.critical

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary."""
        return {
            "excellent": self.excellent,
            "good": self.good,
            "warning": self.warning,
            "critical": self.critical,
        }


@dataclass
class ClusterMetrics:
    """
    Summary of a group of nodes.

    Attributes:
        count: Number of nodes
        avg_health: Mean health over nodes reporting one (0 if none do)
        min_health: Lowest reported health
        max_health: Highest reported health
        health_distribution: Counts per health band
        countries: Node count per country ("Unknown" when missing)
        cities: Node count per city ("Unknown" when missing)
        operators: Node count per known operator (nodes without one are not counted)
        total_storage_gb: Sum of committed storage
        bounds: Bounding box of node positions
    """

    count: int
    avg_health: float
    min_health: Optional[float]
    max_health: Optional[float]
    health_distribution: HealthDistribution
    countries: Counter = field(default_factory=Counter)
    cities: Counter = field(default_factory=Counter)
    operators: Counter = field(default_factory=Counter)
    total_storage_gb: float = 0.0
    bounds: Optional[BoundingBox] = None

    @property
    def primary_country(self) -> str:
        """Most common country (first seen wins ties)."""
        return self.countries.most_common(1)[0][0] if self.countries else "Unknown"

    @property
    def primary_city(self) -> str:
        """Most common city (first seen wins ties)."""
        return self.cities.most_common(1)[0][0] if self.cities else "Unknown"

    @property
    def operator_count(self) -> int:
        """Number of distinct operators."""
        return len(self.operators)

    @property
    def size_class(self) -> ClusterSizeClass:
        return size_class_for_count(self.count)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "count": self.count,
            "avg_health": self.avg_health,
            "min_health": self.min_health,
            "max_health": self.max_health,
            "health_distribution": self.health_distribution.to_dict(),
            "countries": dict(self.countries),
            "cities": dict(self.cities),
            "operators": dict(self.operators),
            "operator_count": self.operator_count,
            "primary_country": self.primary_country,
            "primary_city": self.primary_city,
            "total_storage_gb": self.total_storage_gb,
            "size_class": self.size_class.value,
            "bounds": self.bounds.to_list() if self.bounds else None,
        }


def _numeric(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def compute_cluster_metrics(nodes: Sequence[NodeRecord]) -> ClusterMetrics:
    """
    Summarize a group of nodes.

    Health is read from ``metadata["health"]``, location from
    ``metadata["country"]`` / ``metadata["city"]``, the operator from
    ``metadata["operator"]`` and storage from ``metadata["storage"]`` (GB).
    Non-numeric values are ignored.
    """
    distribution = HealthDistribution()
    countries: Counter = Counter()
    cities: Counter = Counter()
    operators: Counter = Counter()
    healths: List[float] = []
    storage = 0.0

    for node in nodes:
        health = _numeric(node.metadata.get("health"))
        if health is not None:
            healths.append(health)
            distribution.add(health)
        countries[node.metadata.get("country") or "Unknown"] += 1
        cities[node.metadata.get("city") or "Unknown"] += 1
        operator = node.metadata.get("operator")
        if operator:
            operators[operator] += 1
        storage += _numeric(node.metadata.get("storage")) or 0.0

    return ClusterMetrics(
        count=len(nodes),
        avg_health=round(sum(healths) / len(healths), 1) if healths else 0.0,
        min_health=min(healths) if healths else None,
        max_health=max(healths) if healths else None,
        health_distribution=distribution,
        countries=countries,
        cities=cities,
        operators=operators,
        total_storage_gb=storage,
        bounds=calculate_bounds(node.position for node in nodes) if nodes else None,
    )


def cluster_metrics(index, cluster) -> ClusterMetrics:
    """Metrics over every node under a cluster of an index."""
    return compute_cluster_metrics(index.get_cluster_leaves(cluster, limit=None))


# =============================================================================
# Index Metrics
# =============================================================================


@dataclass
class ZoomLevelStats:
    """Entries of one zoom level."""

    zoom: int
    entries: int
    clusters: int
    loose_nodes: int
    largest_cluster: int
    density: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "zoom": self.zoom,
            "entries": self.entries,
            "clusters": self.clusters,
            "loose_nodes": self.loose_nodes,
            "largest_cluster": self.largest_cluster,
            "density": self.density,
        }


@dataclass
class IndexMetrics:
    """Per-zoom statistics of an index build."""

    generation: int
    total_nodes: int
    skipped_nodes: int
    total_clusters: int
    build_ms: float
    levels: List[ZoomLevelStats] = field(default_factory=list)

    def level(self, zoom: int) -> ZoomLevelStats:
        for stats in self.levels:
            if stats.zoom == zoom:
                return stats
        raise KeyError(f"No statistics for zoom {zoom}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "generation": self.generation,
            "total_nodes": self.total_nodes,
            "skipped_nodes": self.skipped_nodes,
            "total_clusters": self.total_clusters,
            "build_ms": self.build_ms,
            "levels": [stats.to_dict() for stats in self.levels],
        }


def compute_index_metrics(index) -> IndexMetrics:
    """
    Statistics for every zoom level of an index.

    Density is nodes per square degree of the bounds occupied by the
    level's entries (0 for empty or single-position levels).
    """
    levels = []
    for zoom in range(index.min_zoom, index.max_zoom + 1):
        entries = index.zoom_entries(zoom)
        cluster_counts = [f.point_count for f in entries if is_cluster(f)]
        area = calculate_bounds(f.position for f in entries).area if entries else 0.0
        levels.append(
            ZoomLevelStats(
                zoom=zoom,
                entries=len(entries),
                clusters=len(cluster_counts),
                loose_nodes=len(entries) - len(cluster_counts),
                largest_cluster=max(cluster_counts, default=0),
                density=index.total_nodes / area if area > 0 else 0.0,
            )
        )

    return IndexMetrics(
        generation=index.generation,
        total_nodes=index.total_nodes,
        skipped_nodes=index.skipped_nodes,
        total_clusters=index.total_clusters,
        build_ms=index.build_ms,
        levels=levels,
    )
