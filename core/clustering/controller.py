"""
Clustering Controller.

Owns the camera and the current cluster index and decides what is drawn:
- Rebuilds the index only when the node set changes (by content version)
- Queries the index on every camera change and warms adjacent zoom levels
- Drives drill-in / drill-out navigation one keyframe at a time
- Spiderfies coincident nodes at the finest level
- Falls back to un-clustered rendering when the index fails

Builds follow last-write-wins: begin_build() hands out a ticket and
complete_build() only swaps the new index in if no newer ticket was issued
in the meantime.

View modes:
    IDLE ---cluster click---> TRANSITIONING ---last step---> IDLE
                                            \\--last step, coincident--> SPIDERFIED
    any camera change ---> IDLE

Example Usage:
    from core.clustering.controller import ClusteringController

    controller = ClusteringController()
    controller.load_nodes(nodes)
    frame = controller.set_camera(CameraState(lat=48.8, lng=2.3, altitude=0.5))
    if frame.clusters:
        controller.click_cluster(frame.clusters[0])
        frames = controller.run_navigation()
"""

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.clustering.config import AtlasConfig
from core.clustering.exceptions import ClusteringError, ClusterNotFoundError
from core.clustering.features import (
    ClusterFeature,
    NodeFeature,
    NodeRecord,
    PointOrCluster,
    is_cluster,
    is_node,
)
from core.clustering.geometry import (
    BoundingBox,
    CameraState,
    altitude_to_zoom,
    expand_bounds,
    get_visible_bounds,
    zoom_to_altitude,
)
from core.clustering.index import (
    AdaptiveClusterIndex,
    ClusterExpansionResult,
    create_cluster_index,
)
from core.clustering.navigation import (
    NavigationRun,
    NavigationTarget,
    build_navigation_path,
    home_target,
    target_for_zoom_out,
)
from core.clustering.sources import NodeSource, compute_node_set_version
from core.clustering.spiderfy import (
    SpiderfiedNode,
    group_coincident_nodes,
    spiderfy_nodes,
)

logger = logging.getLogger(__name__)


class ViewMode(Enum):
    """Interaction state of the globe view."""

    IDLE = "idle"  # Camera at rest, features follow the camera
    TRANSITIONING = "transitioning"  # Navigation keyframes being consumed
    SPIDERFIED = "spiderfied"  # A coincident group is fanned out


@dataclass(frozen=True)
class BuildTicket:
    """
    Handle for one requested index build.

    Attributes:
        number: Monotonic ticket number
        version: Fingerprint of the node set to build
        nodes: Node records to build from
    """

    number: int
    version: str
    nodes: Tuple[NodeRecord, ...] = field(repr=False)


@dataclass(frozen=True)
class FrameResult:
    """
    Everything the renderer needs for one frame.

    Attributes:
        camera: Camera the frame was computed for
        bounds: Visible bounds
        zoom: Zoom level derived from the camera altitude
        features: Clusters and nodes to draw
        spiderfied: Fanned-out nodes (drawn with legs)
        mode: View mode at the time of the frame
        degraded: True if the index failed and all nodes are drawn un-clustered
        generation: Build generation of the index used (None without index)
    """

    camera: CameraState
    bounds: BoundingBox
    zoom: int
    features: Tuple[PointOrCluster, ...]
    spiderfied: Tuple[SpiderfiedNode, ...] = ()
    mode: ViewMode = ViewMode.IDLE
    degraded: bool = False
    generation: Optional[int] = None

    @property
    def clusters(self) -> List[ClusterFeature]:
        return [f for f in self.features if is_cluster(f)]

    @property
    def nodes(self) -> List[NodeFeature]:
        return [f for f in self.features if is_node(f)]

    @property
    def visible_node_count(self) -> int:
        """Nodes represented in the frame, clusters included."""
        return sum(f.point_count for f in self.features)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "camera": self.camera.to_dict(),
            "bounds": self.bounds.to_list(),
            "zoom": self.zoom,
            "features": [f.to_dict() for f in self.features],
            "spiderfied": [s.to_dict() for s in self.spiderfied],
            "mode": self.mode.value,
            "degraded": self.degraded,
            "generation": self.generation,
        }


class ClusteringController:
    """
    Camera-driven clustering state.

    Single-threaded: callers invoke methods from one event loop. State is
    replaced by reference (index, camera, navigation run), never mutated
    in place by another component.
    """

    def __init__(
        self,
        config: Optional[AtlasConfig] = None,
        source: Optional[NodeSource] = None,
        camera: Optional[CameraState] = None,
    ):
        self.config = config or AtlasConfig()
        self.config.clustering.validate()
        self.source = source

        nav = self.config.navigation
        self.camera = camera or CameraState(
            lat=nav.home_lat, lng=nav.home_lng, altitude=nav.home_altitude
        )
        self.mode = ViewMode.IDLE
        self.index: Optional[AdaptiveClusterIndex] = None
        self.node_set_version: Optional[str] = None
        self.degraded = False
        self.last_frame: Optional[FrameResult] = None

        self._nodes: Tuple[NodeRecord, ...] = ()
        self._tickets = itertools.count(1)
        self._latest_ticket = 0
        self._navigation: Optional[NavigationRun] = None
        self._pending_expansion: Optional[ClusterExpansionResult] = None
        self._spider: Tuple[SpiderfiedNode, ...] = ()

    # -------------------------------------------------------------------------
    # Index Lifecycle
    # -------------------------------------------------------------------------

    def begin_build(self, nodes: Iterable[NodeRecord], version: Optional[str] = None) -> BuildTicket:
        """Issue a build ticket; any earlier outstanding ticket is superseded."""
        nodes = tuple(nodes)
        ticket = BuildTicket(
            number=next(self._tickets),
            version=version or compute_node_set_version(nodes),
            nodes=nodes,
        )
        self._latest_ticket = ticket.number
        logger.debug(f"Issued build ticket {ticket.number} for version {ticket.version}")
        return ticket

    def complete_build(self, ticket: BuildTicket) -> bool:
        """
        Build the index for a ticket and swap it in if the ticket is current.

        Returns:
            True if the index was replaced, False if the ticket was superseded
        """
        if ticket.number != self._latest_ticket:
            logger.warning(
                f"Discarding build ticket {ticket.number}: superseded by {self._latest_ticket}"
            )
            return False

        try:
            index = create_cluster_index(ticket.nodes, self.config.clustering)
        except ClusteringError as e:
            logger.warning(f"Cluster index build failed, rendering un-clustered: {e}")
            index = None

        # A newer ticket may have been issued while building
        if ticket.number != self._latest_ticket:
            logger.warning(f"Discarding built index for superseded ticket {ticket.number}")
            return False

        self.index = index
        self._nodes = ticket.nodes
        self.node_set_version = ticket.version
        self._spider = ()
        if self.mode is ViewMode.SPIDERFIED:
            self.mode = ViewMode.IDLE
        self.refresh()
        return True

    def load_nodes(self, nodes: Iterable[NodeRecord], version: Optional[str] = None) -> bool:
        """
        Rebuild the index if the node set changed.

        Returns:
            True if a rebuild happened
        """
        nodes = tuple(nodes)
        version = version or compute_node_set_version(nodes)
        if version == self.node_set_version:
            logger.debug(f"Node set {version} unchanged, keeping index")
            return False
        return self.complete_build(self.begin_build(nodes, version))

    def sync(self) -> bool:
        """Fetch from the node source and rebuild on change."""
        if self.source is None:
            raise ValueError("Controller has no node source")
        snapshot = self.source.fetch()
        return self.load_nodes(snapshot.nodes, snapshot.version)

    @property
    def total_nodes(self) -> int:
        return len(self._nodes)

    # -------------------------------------------------------------------------
    # Camera and Queries
    # -------------------------------------------------------------------------

    @property
    def zoom(self) -> int:
        """Zoom level of the current camera."""
        return altitude_to_zoom(self.camera.altitude, self.config.zoom_scale)

    def set_camera(self, camera: CameraState) -> FrameResult:
        """
        Move the camera as a user gesture.

        Aborts any running navigation and closes a spiderfied group.
        """
        if self._navigation is not None and self._navigation.is_active:
            self._navigation.abort()
        self._navigation = None
        self._pending_expansion = None
        self._spider = ()
        self.mode = ViewMode.IDLE
        self.camera = camera
        return self.refresh()

    def refresh(self) -> FrameResult:
        """Recompute the frame for the current camera."""
        bounds = get_visible_bounds(self.camera, self.config.footprint)
        zoom = self.zoom
        spiderfied: Tuple[SpiderfiedNode, ...] = self._spider

        try:
            features = self._query(bounds, zoom)
            self.degraded = self.index is None and bool(self._nodes)
        except ClusteringError as e:
            logger.warning(f"Cluster query failed, rendering un-clustered: {e}")
            features = None
            self.degraded = True

        if self.degraded:
            features = self._unclustered(bounds)
        elif self.index is not None:
            spiderfied = spiderfied + self._auto_spiderfy(features, zoom)
            if self.config.prefetch_adjacent:
                self.prefetch(bounds, zoom)

        frame = FrameResult(
            camera=self.camera,
            bounds=bounds,
            zoom=zoom,
            features=tuple(features),
            spiderfied=spiderfied,
            mode=self.mode,
            degraded=self.degraded,
            generation=self.index.generation if self.index is not None else None,
        )
        self.last_frame = frame
        return frame

    def _query(self, bounds: BoundingBox, zoom: int) -> List[PointOrCluster]:
        if self.index is None:
            return []
        return self.index.query(bounds, zoom)

    def _unclustered(self, bounds: BoundingBox) -> List[NodeFeature]:
        """Every valid node inside the bounds, as plain node features."""
        return [
            NodeFeature(node)
            for node in self._nodes
            if node.is_valid and bounds.contains_point(node.lng, node.lat)
        ]

    def _auto_spiderfy(self, features: List[PointOrCluster], zoom: int) -> Tuple[SpiderfiedNode, ...]:
        """Fan out nodes that still coincide at the finest level."""
        clustering = self.config.clustering
        if not clustering.enable_spiderfying or self.index.clamp_zoom(zoom) < self.index.max_zoom:
            return ()

        already = {s.node.id for s in self._spider}
        nodes = [f.node for f in features if is_node(f) and f.id not in already]
        return self._spiderfy_groups(nodes)

    def _spiderfy_groups(self, nodes: List[NodeRecord]) -> Tuple[SpiderfiedNode, ...]:
        """Spider layouts for every group of two or more coincident nodes."""
        placed: List[SpiderfiedNode] = []
        for group in group_coincident_nodes(nodes, self.config.clustering.coincidence_cell()):
            if len(group) > 1:
                center = (
                    sum(n.lng for n in group) / len(group),
                    sum(n.lat for n in group) / len(group),
                )
                placed.extend(spiderfy_nodes(group, center, self.config.spider))
        return tuple(placed)

    def prefetch(self, bounds: BoundingBox, zoom: int) -> int:
        """
        Warm the query cache for the adjacent zoom levels.

        Best effort: failures are logged and never reach the caller.

        Returns:
            Number of levels warmed
        """
        if self.index is None:
            return 0
        try:
            expanded = expand_bounds(bounds, self.config.clustering.prefetch_margin_ratio)
        except ValueError as e:
            logger.warning(f"Prefetch skipped: {e}")
            return 0

        current = self.index.clamp_zoom(zoom)
        warmed = 0
        for adjacent in (current - 1, current + 1):
            if not self.index.min_zoom <= adjacent <= self.index.max_zoom:
                continue
            try:
                self.index.query(expanded, adjacent)
                warmed += 1
            except ClusteringError as e:
                logger.warning(f"Prefetch at zoom {adjacent} failed: {e}")
        return warmed

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    @property
    def navigation(self) -> Optional[NavigationRun]:
        """Active navigation run, if any."""
        return self._navigation

    @property
    def spiderfied(self) -> Tuple[SpiderfiedNode, ...]:
        """Nodes fanned out by the last cluster expansion."""
        return self._spider

    def click_cluster(self, cluster: ClusterFeature) -> Optional[NavigationRun]:
        """
        Start drilling into a cluster.

        Returns:
            The navigation run, or None if the cluster is not in the current
            index (the view is refreshed instead)
        """
        if self.index is None:
            logger.warning("Cluster click ignored: no index")
            return None
        try:
            expansion = self.index.expand_cluster(cluster, self.config.zoom_scale)
        except ClusterNotFoundError as e:
            logger.warning(f"Cluster click ignored: {e}")
            self.refresh()
            return None

        scale = self.config.zoom_scale
        zoom = min(expansion.expansion_zoom + self.config.navigation.drill_extra_levels, scale.max_zoom)
        target = NavigationTarget(
            lng=expansion.center[0],
            lat=expansion.center[1],
            altitude=min(self.camera.altitude, zoom_to_altitude(zoom, scale)),
            label=f"cluster {expansion.cluster_id}",
        )
        return self._start_navigation(target, expansion)

    def zoom_out(self) -> NavigationRun:
        """Start a drill-out from the current camera."""
        return self._start_navigation(
            target_for_zoom_out(self.camera, self.config.navigation, self.config.zoom_scale)
        )

    def reset_view(self) -> NavigationRun:
        """Start navigating back to the globe overview."""
        return self._start_navigation(home_target(self.config.navigation))

    def _start_navigation(
        self,
        target: NavigationTarget,
        expansion: Optional[ClusterExpansionResult] = None,
    ) -> NavigationRun:
        if self._navigation is not None and self._navigation.is_active:
            self._navigation.abort()
        path = build_navigation_path(
            self.camera,
            target,
            config=self.config.navigation,
            scale=self.config.zoom_scale,
        )
        self._navigation = NavigationRun(path)
        self._pending_expansion = expansion
        self._spider = ()
        self.mode = ViewMode.TRANSITIONING
        logger.debug(f"Navigating to {target.label or 'target'} in {len(path)} steps")
        return self._navigation

    def step(self) -> Optional[FrameResult]:
        """
        Advance the active navigation by one keyframe.

        Returns:
            The frame at the new camera, or None if nothing is running
        """
        run = self._navigation
        if run is None or not run.is_active:
            return None
        keyframe = next(run)
        self.camera = keyframe.apply_to(self.camera)
        if run.is_complete:
            self._finish_navigation()
        return self.refresh()

    def run_navigation(self) -> List[FrameResult]:
        """Consume the active navigation to the end."""
        frames = []
        frame = self.step()
        while frame is not None:
            frames.append(frame)
            frame = self.step()
        return frames

    def abort_navigation(self) -> None:
        """Stop the active navigation where it is."""
        if self._navigation is not None:
            self._navigation.abort()
        self._navigation = None
        self._pending_expansion = None
        if self.mode is ViewMode.TRANSITIONING:
            self.mode = ViewMode.IDLE

    def _finish_navigation(self) -> None:
        expansion = self._pending_expansion
        self._pending_expansion = None
        self._navigation = None
        if expansion is not None and expansion.spiderfy:
            self._spider = self._spiderfy_groups(list(expansion.nodes))
        if self._spider:
            self.mode = ViewMode.SPIDERFIED
            logger.debug(f"Spiderfied cluster {expansion.cluster_id} ({len(self._spider)} nodes)")
        else:
            self.mode = ViewMode.IDLE
