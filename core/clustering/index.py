"""
Adaptive Cluster Index for Node Markers.

Builds a zoom hierarchy of clusters over node positions and answers
"what should be drawn here" queries on every camera frame:
- Per-zoom KD-trees (scipy cKDTree) over Web Mercator coordinates
- Greedy radius clustering from the finest zoom down to the coarsest
- Bounding box queries with antimeridian handling and an LRU result cache
- Cluster expansion to children or, at the finest level, raw nodes

The index is immutable once built. A changed node set means a new index;
each build gets a fresh generation so features from an older build are
detected instead of silently resolving to a different cluster.

Key Components:
- AdaptiveClusterIndex: The built hierarchy and its query operations
- ClusterExpansionResult: Outcome of expanding a cluster
- create_cluster_index: Validate configuration and build

Example Usage:
    from core.clustering.index import create_cluster_index
    from core.clustering.geometry import WORLD_BOUNDS

    index = create_cluster_index(nodes, ClusterConfig(max_zoom_level=16))
    features = index.query(WORLD_BOUNDS, zoom=0)
    expansion = index.expand_cluster(features[0])
"""

import itertools
import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.spatial import cKDTree

from core.clustering.config import CentroidWeighting, ClusterConfig
from core.clustering.exceptions import (
    ClusterNotFoundError,
    FeatureKindError,
    StaleClusterError,
)
from core.clustering.features import (
    ClusterFeature,
    FeatureKind,
    NodeFeature,
    NodeRecord,
    PointOrCluster,
    get_cluster_level,
    is_cluster,
)
from core.clustering.geometry import (
    DEFAULT_ZOOM_SCALE,
    BoundingBox,
    ZoomScale,
    lat_to_y,
    lng_to_x,
    project_points,
    x_to_lng,
    y_to_lat,
    zoom_to_altitude,
)

logger = logging.getLogger(__name__)

# Build generations are unique per process
_generations = itertools.count(1)

# Slack on the KD ball radius and edge mask so boundary points survive rounding
_BALL_SLACK = 1e-12

ClusterRef = Union[int, ClusterFeature]


# =============================================================================
# Internal Storage
# =============================================================================


@dataclass
class _ClusterRecord:
    """Arena entry for one cluster."""

    id: int
    x: float
    y: float
    point_count: int
    zoom: int
    level: int
    # (is_cluster, ref) pairs; ref is a cluster id or a node index
    children: List[Tuple[bool, int]] = field(default_factory=list)


@dataclass
class _ZoomLevel:
    """Entries visible at one zoom, stored column-wise."""

    zoom: int
    xs: np.ndarray
    ys: np.ndarray
    is_cluster: np.ndarray
    refs: np.ndarray
    counts: np.ndarray
    levels: np.ndarray
    tree: Optional[cKDTree] = None

    def __post_init__(self):
        if len(self.xs) and self.tree is None:
            self.tree = cKDTree(np.column_stack([self.xs, self.ys]))

    def __len__(self) -> int:
        return len(self.xs)


@dataclass(frozen=True)
class ClusterExpansionResult:
    """
    Result of expanding a cluster one step.

    Attributes:
        cluster_id: Expanded cluster
        children: Features one zoom finer (clusters and/or nodes)
        nodes: Raw node records, set only at the finest level
        at_finest_level: True if every child is a node
        spiderfy: True if some of the nodes coincide and need a radial layout
        expansion_zoom: Zoom at which the children become visible
        target_altitude: Camera altitude for the expansion zoom
        center: Cluster centroid as (lng, lat)
    """

    cluster_id: int
    children: Tuple[PointOrCluster, ...]
    nodes: Tuple[NodeRecord, ...]
    at_finest_level: bool
    spiderfy: bool
    expansion_zoom: int
    target_altitude: float
    center: Tuple[float, float]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "cluster_id": self.cluster_id,
            "children": [child.to_dict() for child in self.children],
            "nodes": [node.to_dict() for node in self.nodes],
            "at_finest_level": self.at_finest_level,
            "spiderfy": self.spiderfy,
            "expansion_zoom": self.expansion_zoom,
            "target_altitude": self.target_altitude,
            "center": list(self.center),
        }


# =============================================================================
# Cluster Index
# =============================================================================


class AdaptiveClusterIndex:
    """
    Hierarchical cluster index over a fixed node set.

    Levels are held for every zoom from ``min_zoom_level`` to
    ``max_zoom_level + 1``; the extra level holds the raw nodes.

    Build with create_cluster_index() rather than instantiating directly.
    """

    def __init__(self, nodes: Iterable[NodeRecord], config: Optional[ClusterConfig] = None):
        # Copied: the caller's config may change after the build
        self.config = replace(config) if config is not None else ClusterConfig()
        self._generation = next(_generations)
        self._clusters: Dict[int, _ClusterRecord] = {}
        self._levels: Dict[int, _ZoomLevel] = {}
        self._cluster_features: Dict[int, ClusterFeature] = {}
        self._query_cache: "OrderedDict[Tuple, Tuple[PointOrCluster, ...]]" = OrderedDict()
        self._cache_hits = 0
        self._cache_misses = 0
        self._fingerprint: Optional[str] = None

        self._nodes: List[NodeRecord] = []
        self.skipped_nodes = 0
        for node in nodes:
            if not isinstance(node, NodeRecord):
                raise TypeError(f"Expected NodeRecord, got {type(node).__name__}")
            if node.is_valid:
                self._nodes.append(node)
            else:
                self.skipped_nodes += 1
                logger.debug(f"Skipping node {node.id} with invalid position {node.position}")
        if self.skipped_nodes:
            logger.warning(f"Skipped {self.skipped_nodes} nodes with invalid coordinates")

        self._node_features = [NodeFeature(node) for node in self._nodes]
        self._nodes_by_id: Dict[str, NodeRecord] = {}
        for node in self._nodes:
            self._nodes_by_id.setdefault(node.id, node)

        start = time.perf_counter()
        self._build()
        self.build_ms = (time.perf_counter() - start) * 1000.0

        logger.info(
            f"Built cluster index generation {self._generation}: "
            f"{len(self._nodes)} nodes, {len(self._clusters)} clusters, "
            f"zooms {self.config.min_zoom_level}-{self.config.max_zoom_level} "
            f"in {self.build_ms:.1f}ms"
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def generation(self) -> int:
        """Build generation of this index."""
        return self._generation

    @property
    def total_nodes(self) -> int:
        """Number of indexed (valid) nodes."""
        return len(self._nodes)

    @property
    def total_clusters(self) -> int:
        """Number of clusters across all zoom levels."""
        return len(self._clusters)

    @property
    def nodes(self) -> Tuple[NodeRecord, ...]:
        """Indexed nodes in input order."""
        return tuple(self._nodes)

    @property
    def min_zoom(self) -> int:
        return self.config.min_zoom_level

    @property
    def max_zoom(self) -> int:
        """Finest queryable zoom (raw nodes)."""
        return self.config.max_zoom_level + 1

    @property
    def fingerprint(self) -> str:
        """Content fingerprint of the indexed node set."""
        if self._fingerprint is None:
            # Imported here to keep sources free of index imports
            from core.clustering.sources import compute_node_set_version

            self._fingerprint = compute_node_set_version(self._nodes)
        return self._fingerprint

    @property
    def cache_info(self) -> Dict[str, int]:
        """Query cache statistics."""
        return {
            "hits": self._cache_hits,
            "misses": self._cache_misses,
            "size": len(self._query_cache),
            "max_size": self.config.query_cache_size,
        }

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def _build(self) -> None:
        """Build every zoom level from the raw nodes upward."""
        config = self.config
        n = len(self._nodes)
        lngs = np.fromiter((node.lng for node in self._nodes), dtype=np.float64, count=n)
        lats = np.fromiter((node.lat for node in self._nodes), dtype=np.float64, count=n)
        xs, ys = project_points(lngs, lats)

        level = _ZoomLevel(
            zoom=config.max_zoom_level + 1,
            xs=xs,
            ys=ys,
            is_cluster=np.zeros(n, dtype=bool),
            refs=np.arange(n, dtype=np.int64),
            counts=np.ones(n, dtype=np.int64),
            levels=np.zeros(n, dtype=np.int64),
        )
        self._levels[level.zoom] = level

        for zoom in range(config.max_zoom_level, config.min_zoom_level - 1, -1):
            level = self._cluster_level(level, zoom)
            self._levels[zoom] = level
            logger.debug(f"Zoom {zoom}: {len(level)} entries")

    def _cluster_level(self, previous: _ZoomLevel, zoom: int) -> _ZoomLevel:
        """Merge the entries of the next finer zoom into clusters at ``zoom``."""
        n = len(previous)
        if n == 0:
            return _ZoomLevel(
                zoom=zoom,
                xs=previous.xs,
                ys=previous.ys,
                is_cluster=previous.is_cluster,
                refs=previous.refs,
                counts=previous.counts,
                levels=previous.levels,
            )

        radius = self.config.radius_at_zoom(zoom)
        min_points = self.config.min_points_per_cluster
        uniform = self.config.centroid_weighting is CentroidWeighting.UNIFORM

        points = np.column_stack([previous.xs, previous.ys])
        neighbors = previous.tree.query_ball_point(points, radius, return_sorted=True)

        processed = np.zeros(n, dtype=bool)
        xs: List[float] = []
        ys: List[float] = []
        is_cluster: List[bool] = []
        refs: List[int] = []
        counts: List[int] = []
        levels: List[int] = []

        def carry(i: int) -> None:
            xs.append(previous.xs[i])
            ys.append(previous.ys[i])
            is_cluster.append(bool(previous.is_cluster[i]))
            refs.append(int(previous.refs[i]))
            counts.append(int(previous.counts[i]))
            levels.append(int(previous.levels[i]))

        for i in range(n):
            if processed[i]:
                continue
            processed[i] = True
            candidates = [j for j in neighbors[i] if not processed[j]]
            total = int(previous.counts[i]) + int(previous.counts[candidates].sum())

            if candidates and total >= min_points:
                members = np.array([i] + candidates, dtype=np.int64)
                processed[members] = True
                weights = (
                    np.ones(len(members)) if uniform else previous.counts[members].astype(np.float64)
                )
                cx = float(np.dot(previous.xs[members], weights) / weights.sum())
                cy = float(np.dot(previous.ys[members], weights) / weights.sum())

                record = _ClusterRecord(
                    id=len(self._clusters),
                    x=cx,
                    y=cy,
                    point_count=total,
                    zoom=zoom,
                    level=1 + int(previous.levels[members].max()),
                    children=[
                        (bool(previous.is_cluster[m]), int(previous.refs[m])) for m in members
                    ],
                )
                self._clusters[record.id] = record

                xs.append(cx)
                ys.append(cy)
                is_cluster.append(True)
                refs.append(record.id)
                counts.append(total)
                levels.append(record.level)
            else:
                carry(i)
                # Too few points to merge: neighbors stay loose at this zoom
                for j in candidates:
                    processed[j] = True
                    carry(j)

        return _ZoomLevel(
            zoom=zoom,
            xs=np.asarray(xs, dtype=np.float64),
            ys=np.asarray(ys, dtype=np.float64),
            is_cluster=np.asarray(is_cluster, dtype=bool),
            refs=np.asarray(refs, dtype=np.int64),
            counts=np.asarray(counts, dtype=np.int64),
            levels=np.asarray(levels, dtype=np.int64),
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def clamp_zoom(self, zoom: float) -> int:
        """Clamp a (possibly fractional) zoom into the indexed range."""
        if not isinstance(zoom, (int, float)) or not math.isfinite(zoom):
            raise ValueError(f"zoom must be a finite number, got {zoom!r}")
        return max(self.min_zoom, min(self.max_zoom, int(math.floor(zoom))))

    def query(self, bounds: BoundingBox, zoom: float) -> List[PointOrCluster]:
        """
        Features to draw inside a bounding box at a zoom level.

        Pure with respect to the index: identical arguments give identical
        results. A box crossing the antimeridian is answered as the union
        of its two halves.

        Args:
            bounds: Query region (may be unwrapped or cross the antimeridian)
            zoom: Zoom level, clamped to [min_zoom, max_zoom]

        Returns:
            Clusters and nodes inside the region
        """
        zoom = self.clamp_zoom(zoom)
        box = bounds.normalized()
        key = (box.west, box.south, box.east, box.north, zoom)

        cached = self._query_cache.get(key)
        if cached is not None:
            self._query_cache.move_to_end(key)
            self._cache_hits += 1
            logger.debug(f"Query cache hit at zoom {zoom}")
            return list(cached)
        self._cache_misses += 1

        level = self._levels[zoom]
        if box.west <= box.east:
            indices = self._range(level, box.west, box.south, box.east, box.north)
        else:
            west_half = self._range(level, box.west, box.south, 180.0, box.north)
            east_half = self._range(level, -180.0, box.south, box.east, box.north)
            indices = list(dict.fromkeys(itertools.chain(west_half, east_half)))

        result = tuple(self._feature_at(level, i) for i in indices)

        if self.config.query_cache_size > 0:
            self._query_cache[key] = result
            if len(self._query_cache) > self.config.query_cache_size:
                self._query_cache.popitem(last=False)

        return list(result)

    def _range(
        self,
        level: _ZoomLevel,
        west: float,
        south: float,
        east: float,
        north: float,
    ) -> List[int]:
        """Indices of entries of a level inside a non-crossing box."""
        if level.tree is None:
            return []
        x0, x1 = lng_to_x(west), lng_to_x(east)
        y0, y1 = lat_to_y(north), lat_to_y(south)
        center = [(x0 + x1) / 2, (y0 + y1) / 2]
        half = max(x1 - x0, y1 - y0) / 2
        candidates = level.tree.query_ball_point(
            center, half * (1 + _BALL_SLACK) + _BALL_SLACK, p=np.inf, return_sorted=True
        )
        if not candidates:
            return []
        candidates = np.asarray(candidates, dtype=np.int64)
        xs = level.xs[candidates]
        ys = level.ys[candidates]
        eps = _BALL_SLACK
        inside = (xs >= x0 - eps) & (xs <= x1 + eps) & (ys >= y0 - eps) & (ys <= y1 + eps)
        return candidates[inside].tolist()

    def _feature_at(self, level: _ZoomLevel, i: int) -> PointOrCluster:
        ref = int(level.refs[i])
        if level.is_cluster[i]:
            return self._cluster_feature(ref)
        return self._node_features[ref]

    def _cluster_feature(self, cluster_id: int) -> ClusterFeature:
        feature = self._cluster_features.get(cluster_id)
        if feature is None:
            record = self._clusters[cluster_id]
            feature = ClusterFeature(
                cluster_id=record.id,
                lng=x_to_lng(record.x),
                lat=y_to_lat(record.y),
                point_count=record.point_count,
                level=record.level,
                zoom=record.zoom,
                child_ids=tuple(ref for is_c, ref in record.children if is_c),
                generation=self._generation,
            )
            self._cluster_features[cluster_id] = feature
        return feature

    def clear_cache(self) -> None:
        """Drop cached query results."""
        self._query_cache.clear()

    # -------------------------------------------------------------------------
    # Cluster Navigation
    # -------------------------------------------------------------------------

    def _resolve(self, cluster: ClusterRef, operation: str) -> _ClusterRecord:
        """Look up the record for a cluster id or feature."""
        if isinstance(cluster, NodeFeature):
            raise FeatureKindError(
                FeatureKind.CLUSTER.value, FeatureKind.NODE.value, operation=operation
            )
        if isinstance(cluster, ClusterFeature):
            if cluster.generation != self._generation:
                raise StaleClusterError(cluster.cluster_id, cluster.generation, self._generation)
            cluster_id = cluster.cluster_id
        else:
            cluster_id = cluster

        record = self._clusters.get(cluster_id) if isinstance(cluster_id, int) else None
        if record is None:
            raise ClusterNotFoundError(cluster_id, generation=self._generation)
        return record

    def get_cluster(self, cluster: ClusterRef) -> ClusterFeature:
        """Feature for a cluster id."""
        return self._cluster_feature(self._resolve(cluster, "get_cluster").id)

    def get_cluster_children(self, cluster: ClusterRef) -> List[PointOrCluster]:
        """
        Immediate children of a cluster (one zoom finer).

        Raises:
            ClusterNotFoundError: Unknown id
            StaleClusterError: Feature from an older build
        """
        record = self._resolve(cluster, "get_cluster_children")
        return [
            self._cluster_feature(ref) if is_c else self._node_features[ref]
            for is_c, ref in record.children
        ]

    def get_cluster_leaves(
        self,
        cluster: ClusterRef,
        limit: Optional[int] = 10,
        offset: int = 0,
    ) -> List[NodeRecord]:
        """
        Nodes under a cluster, depth first in build order.

        Args:
            cluster: Cluster id or feature
            limit: Maximum nodes to return (None for all)
            offset: Nodes to skip first

        Returns:
            Node records
        """
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")

        record = self._resolve(cluster, "get_cluster_leaves")
        leaves = self._iter_leaves(record)
        stop = None if limit is None else offset + limit
        return [self._nodes[i] for i in itertools.islice(leaves, offset, stop)]

    def _iter_leaves(self, record: _ClusterRecord):
        stack = [record]
        while stack:
            current = stack.pop()
            pending = []
            for is_c, ref in current.children:
                if is_c:
                    pending.append(self._clusters[ref])
                else:
                    yield ref
            stack.extend(reversed(pending))

    def get_cluster_expansion_zoom(self, cluster: ClusterRef) -> int:
        """Zoom at which a cluster's children become visible."""
        record = self._resolve(cluster, "get_cluster_expansion_zoom")
        return min(record.zoom + 1, self.max_zoom)

    def expand_cluster(
        self,
        cluster: ClusterRef,
        scale: ZoomScale = DEFAULT_ZOOM_SCALE,
    ) -> ClusterExpansionResult:
        """
        Expand a cluster one step.

        Returns the immediate children. When every child is a node, the raw
        records are returned as well and ``spiderfy`` is set if two or more
        of them fall in the same coincidence cell.

        Args:
            cluster: Cluster id or feature from this index
            scale: Zoom scale used for the target altitude

        Returns:
            ClusterExpansionResult

        Raises:
            ClusterNotFoundError: Unknown id
            StaleClusterError: Feature from an older build
            FeatureKindError: A node feature was passed
        """
        record = self._resolve(cluster, "expand_cluster")
        children = tuple(self.get_cluster_children(record.id))
        at_finest = not any(is_c for is_c, _ in record.children)

        nodes: Tuple[NodeRecord, ...] = ()
        spiderfy = False
        if at_finest:
            node_indices = [ref for _, ref in record.children]
            nodes = tuple(self._nodes[i] for i in node_indices)
            spiderfy = self.config.enable_spiderfying and self._has_coincident(node_indices)

        expansion_zoom = min(record.zoom + 1, self.max_zoom)
        return ClusterExpansionResult(
            cluster_id=record.id,
            children=children,
            nodes=nodes,
            at_finest_level=at_finest,
            spiderfy=spiderfy,
            expansion_zoom=expansion_zoom,
            target_altitude=zoom_to_altitude(min(expansion_zoom, scale.max_zoom), scale),
            center=(x_to_lng(record.x), y_to_lat(record.y)),
        )

    def _has_coincident(self, node_indices: Sequence[int]) -> bool:
        """True if two of the nodes share a coincidence cell."""
        raw = self._levels[self.max_zoom]
        cell = self.config.coincidence_cell()
        seen = set()
        for i in node_indices:
            key = (int(math.floor(raw.xs[i] / cell)), int(math.floor(raw.ys[i] / cell)))
            if key in seen:
                return True
            seen.add(key)
        return False

    def get_node(self, node_id: str) -> NodeRecord:
        """Indexed node by id."""
        node = self._nodes_by_id.get(node_id)
        if node is None:
            raise KeyError(f"Node {node_id} not found in index")
        return node

    def zoom_entries(self, zoom: int) -> List[PointOrCluster]:
        """Every entry of a zoom level, without touching the query cache."""
        level = self._levels[self.clamp_zoom(zoom)]
        return [self._feature_at(level, i) for i in range(len(level))]

    def __repr__(self) -> str:
        return (
            f"AdaptiveClusterIndex(generation={self._generation}, "
            f"nodes={len(self._nodes)}, clusters={len(self._clusters)})"
        )


# =============================================================================
# Module Functions
# =============================================================================


def create_cluster_index(
    nodes: Iterable[NodeRecord],
    config: Optional[ClusterConfig] = None,
) -> AdaptiveClusterIndex:
    """
    Validate configuration and build a cluster index.

    Args:
        nodes: Node records; invalid positions are skipped
        config: Clustering configuration (defaults if None)

    Returns:
        AdaptiveClusterIndex

    Raises:
        ClusterConfigError: If the configuration is invalid
    """
    return AdaptiveClusterIndex(nodes, config)


def query(index: AdaptiveClusterIndex, bounds: BoundingBox, zoom: float) -> List[PointOrCluster]:
    """Features inside bounds at a zoom level."""
    return index.query(bounds, zoom)


def expand_cluster(
    index: AdaptiveClusterIndex,
    cluster: ClusterRef,
    scale: ZoomScale = DEFAULT_ZOOM_SCALE,
) -> ClusterExpansionResult:
    """Expand a cluster one step."""
    return index.expand_cluster(cluster, scale)


__all__ = [
    "AdaptiveClusterIndex",
    "ClusterExpansionResult",
    "create_cluster_index",
    "expand_cluster",
    "get_cluster_level",
    "is_cluster",
    "query",
]
