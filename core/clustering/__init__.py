"""
Adaptive Node Clustering for the pNode Globe.

Provides the clustering core behind the interactive globe view, turning
thousands of node markers into a zoom-dependent mix of clusters and nodes.

Components:
- Geometry helpers for altitude/zoom conversion and visible bounds
- Cluster index with per-zoom KD-trees and cached region queries
- Navigation paths for drilling into and out of clusters
- Spiderfy layout for nodes sharing a position
- Controller tying camera, index rebuilds and navigation together

Example usage:
    from core.clustering import (
        AtlasConfig,
        CameraState,
        ClusteringController,
        NodeRecord,
    )

    controller = ClusteringController(AtlasConfig())
    controller.load_nodes([
        NodeRecord(id="a", lng=2.35, lat=48.85),
        NodeRecord(id="b", lng=13.40, lat=52.52),
    ])

    # Query what to draw
    frame = controller.set_camera(CameraState(lat=50.0, lng=8.0, altitude=1.2))

    # Drill into the first cluster
    if frame.clusters:
        controller.click_cluster(frame.clusters[0])
        controller.run_navigation()
"""

from core.clustering.config import (
    DEFAULT_CONFIG,
    AtlasConfig,
    CentroidWeighting,
    ClusterConfig,
    NavigationConfig,
    SpiderConfig,
    load_config,
)
from core.clustering.controller import (
    BuildTicket,
    ClusteringController,
    FrameResult,
    ViewMode,
)
from core.clustering.exceptions import (
    ClusterConfigError,
    ClusteringError,
    ClusterNotFoundError,
    FeatureKindError,
    InvalidCameraStateError,
    StaleClusterError,
)
from core.clustering.features import (
    ClusterFeature,
    FeatureKind,
    NodeFeature,
    NodeRecord,
    PointOrCluster,
    format_cluster_count,
    get_cluster_level,
    is_cluster,
    is_node,
)
from core.clustering.geometry import (
    DEFAULT_ZOOM_SCALE,
    WORLD_BOUNDS,
    BoundingBox,
    CameraState,
    FootprintModel,
    ZoomScale,
    altitude_to_zoom,
    calculate_bounds,
    expand_bounds,
    get_visible_bounds,
    zoom_to_altitude,
)
from core.clustering.index import (
    AdaptiveClusterIndex,
    ClusterExpansionResult,
    create_cluster_index,
    expand_cluster,
    query,
)
from core.clustering.metrics import (
    ClusterMetrics,
    ClusterSizeClass,
    IndexMetrics,
    cluster_metrics,
    compute_cluster_metrics,
    compute_index_metrics,
    size_class_for_count,
)
from core.clustering.navigation import (
    Breadcrumb,
    NavigationRun,
    NavigationStep,
    NavigationTarget,
    build_breadcrumbs,
    build_navigation_path,
    ease_out_cubic,
    target_for_cluster,
    target_for_zoom_out,
)
from core.clustering.sources import (
    JsonFileNodeSource,
    NodeSnapshot,
    NodeSource,
    StaticNodeSource,
    compute_node_set_version,
    load_nodes,
    node_from_pnode,
)
from core.clustering.spiderfy import (
    SpiderfiedNode,
    group_coincident_nodes,
    spiderfy_nodes,
)

__all__ = [
    # Config
    "AtlasConfig",
    "CentroidWeighting",
    "ClusterConfig",
    "DEFAULT_CONFIG",
    "NavigationConfig",
    "SpiderConfig",
    "load_config",
    # Controller
    "BuildTicket",
    "ClusteringController",
    "FrameResult",
    "ViewMode",
    # Exceptions
    "ClusterConfigError",
    "ClusteringError",
    "ClusterNotFoundError",
    "FeatureKindError",
    "InvalidCameraStateError",
    "StaleClusterError",
    # Features
    "ClusterFeature",
    "FeatureKind",
    "NodeFeature",
    "NodeRecord",
    "PointOrCluster",
    "format_cluster_count",
    "get_cluster_level",
    "is_cluster",
    "is_node",
    # Geometry
    "BoundingBox",
    "CameraState",
    "DEFAULT_ZOOM_SCALE",
    "FootprintModel",
    "WORLD_BOUNDS",
    "ZoomScale",
    "altitude_to_zoom",
    "calculate_bounds",
    "expand_bounds",
    "get_visible_bounds",
    "zoom_to_altitude",
    # Index
    "AdaptiveClusterIndex",
    "ClusterExpansionResult",
    "create_cluster_index",
    "expand_cluster",
    "query",
    # Metrics
    "ClusterMetrics",
    "ClusterSizeClass",
    "IndexMetrics",
    "cluster_metrics",
    "compute_cluster_metrics",
    "compute_index_metrics",
    "size_class_for_count",
    # Navigation
    "Breadcrumb",
    "NavigationRun",
    "NavigationStep",
    "NavigationTarget",
    "build_breadcrumbs",
    "build_navigation_path",
    "ease_out_cubic",
    "target_for_cluster",
    "target_for_zoom_out",
    # Sources
    "JsonFileNodeSource",
    "NodeSnapshot",
    "NodeSource",
    "StaticNodeSource",
    "compute_node_set_version",
    "load_nodes",
    "node_from_pnode",
    # Spiderfy
    "SpiderfiedNode",
    "group_coincident_nodes",
    "spiderfy_nodes",
]
