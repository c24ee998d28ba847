"""
Tests for the clustering controller (core/clustering/controller.py).

These tests drive the full stack: node sources, index builds, camera
queries, drill-in navigation and spiderfying.
"""

import pytest

from core.clustering import controller as controller_module
from core.clustering.config import AtlasConfig, ClusterConfig
from core.clustering.controller import ClusteringController, ViewMode
from core.clustering.exceptions import ClusteringError
from core.clustering.features import ClusterFeature, NodeRecord, is_node
from core.clustering.geometry import CameraState, zoom_to_altitude
from core.clustering.sources import StaticNodeSource

WORLD_CAMERA = CameraState(lat=20.0, lng=0.0, altitude=6.0)
PARIS_CAMERA = CameraState(lat=48.8566, lng=2.3522, altitude=0.5)


@pytest.fixture
def all_nodes(city_nodes, coincident_pair):
    return city_nodes + coincident_pair


@pytest.fixture
def controller(all_nodes):
    ctrl = ClusteringController()
    ctrl.load_nodes(all_nodes)
    return ctrl


class TestIndexLifecycle:
    """Tests for building and replacing the index."""

    def test_load_builds_index(self, controller, all_nodes):
        """Test that loading nodes builds an index."""
        assert controller.index is not None
        assert controller.total_nodes == len(all_nodes)
        assert controller.node_set_version == controller.index.fingerprint

    def test_unchanged_set_not_rebuilt(self, controller, all_nodes):
        """Test that the same node set keeps the current index."""
        index = controller.index
        assert controller.load_nodes(list(all_nodes)) is False
        assert controller.index is index

    def test_changed_set_rebuilt(self, controller, city_nodes):
        """Test that a different node set replaces the index."""
        generation = controller.index.generation
        assert controller.load_nodes(city_nodes) is True
        assert controller.index.generation > generation
        assert controller.total_nodes == len(city_nodes)

    def test_last_write_wins(self, city_nodes, coincident_pair):
        """Test that a superseded build is discarded."""
        ctrl = ClusteringController()
        old = ctrl.begin_build(city_nodes)
        new = ctrl.begin_build(coincident_pair)
        assert ctrl.complete_build(old) is False
        assert ctrl.index is None
        assert ctrl.complete_build(new) is True
        assert ctrl.node_set_version == new.version
        assert ctrl.total_nodes == 2

    def test_sync_from_source(self, city_nodes):
        """Test rebuilding from a node source only on change."""
        source = StaticNodeSource(city_nodes)
        ctrl = ClusteringController(source=source)
        assert ctrl.sync() is True
        assert ctrl.sync() is False
        source.update(city_nodes[:4])
        assert ctrl.sync() is True
        assert ctrl.total_nodes == 4

    def test_sync_without_source(self):
        with pytest.raises(ValueError):
            ClusteringController().sync()

    def test_empty_controller(self):
        """Test that a controller without nodes renders nothing."""
        frame = ClusteringController().refresh()
        assert frame.features == ()
        assert not frame.degraded
        assert frame.generation is None


class TestFrames:
    """Tests for camera-driven frames."""

    def test_world_view_counts_every_node(self, controller, all_nodes):
        """Test that a globe-wide view accounts for every node."""
        frame = controller.set_camera(WORLD_CAMERA)
        assert frame.visible_node_count == len(all_nodes)
        assert frame.clusters
        assert frame.generation == controller.index.generation
        assert frame.mode is ViewMode.IDLE

    def test_zoom_follows_altitude(self, controller):
        """Test that the frame zoom comes from the camera altitude."""
        frame = controller.set_camera(PARIS_CAMERA)
        assert frame.zoom == controller.zoom
        assert controller.set_camera(CameraState(lat=0.0, lng=0.0, altitude=0.05)).zoom > frame.zoom

    def test_only_visible_region(self, controller):
        """Test that a European view does not include Tokyo."""
        frame = controller.set_camera(CameraState(lat=50.0, lng=8.0, altitude=0.3))
        leaves = set()
        for feature in frame.features:
            if is_node(feature):
                leaves.add(feature.id)
            else:
                leaves.update(n.id for n in controller.index.get_cluster_leaves(feature, limit=None))
        assert leaves
        assert not any(node_id.startswith("tokyo") for node_id in leaves)

    def test_prefetch_warms_adjacent_zooms(self, controller):
        """Test that a frame also caches zoom - 1 and zoom + 1."""
        controller.index.clear_cache()
        controller.set_camera(PARIS_CAMERA)
        assert controller.index.cache_info["size"] == 3

    def test_prefetch_disabled(self, all_nodes):
        config = AtlasConfig(prefetch_adjacent=False)
        ctrl = ClusteringController(config)
        ctrl.load_nodes(all_nodes)
        ctrl.index.clear_cache()
        ctrl.set_camera(PARIS_CAMERA)
        assert ctrl.index.cache_info["size"] == 1

    def test_prefetch_at_edges(self, controller):
        """Test that prefetch skips zooms outside the index."""
        bounds = controller.last_frame.bounds
        assert controller.prefetch(bounds, 0) == 1
        assert controller.prefetch(bounds, controller.index.max_zoom) == 1
        assert controller.prefetch(bounds, 5) == 2

    def test_frame_to_dict(self, controller):
        data = controller.set_camera(WORLD_CAMERA).to_dict()
        assert data["mode"] == "idle"
        assert len(data["bounds"]) == 4
        assert data["features"]


class TestDegradedRendering:
    """Tests for fallback to un-clustered nodes."""

    def test_build_failure(self, monkeypatch, all_nodes):
        """Test that a failed build renders every visible node individually."""

        def failing_build(nodes, config):
            raise ClusteringError("index build failed")

        monkeypatch.setattr(controller_module, "create_cluster_index", failing_build)
        ctrl = ClusteringController()
        assert ctrl.load_nodes(all_nodes) is True
        frame = ctrl.set_camera(WORLD_CAMERA)
        assert frame.degraded
        assert ctrl.index is None
        assert len(frame.features) == len(all_nodes)
        assert all(is_node(f) for f in frame.features)

    def test_query_failure(self, monkeypatch, controller):
        """Test that a failed query falls back for that frame."""

        def failing_query(bounds, zoom):
            raise ClusteringError("query failed")

        monkeypatch.setattr(controller.index, "query", failing_query)
        frame = controller.set_camera(PARIS_CAMERA)
        assert frame.degraded
        assert all(is_node(f) for f in frame.features)

    def test_recovers_after_rebuild(self, monkeypatch, controller, city_nodes):
        """Test that a successful rebuild clears the degraded state."""

        def failing_query(bounds, zoom):
            raise ClusteringError("query failed")

        monkeypatch.setattr(controller.index, "query", failing_query)
        assert controller.refresh().degraded
        controller.load_nodes(city_nodes)
        assert not controller.refresh().degraded


class TestDrillIn:
    """Tests for cluster clicks and navigation."""

    def test_click_cluster_navigates(self, controller):
        """Test that clicking a cluster moves the camera to its expansion zoom."""
        frame = controller.set_camera(WORLD_CAMERA)
        cluster = max(frame.clusters, key=lambda c: c.point_count)
        expansion_zoom = controller.index.get_cluster_expansion_zoom(cluster)

        run = controller.click_cluster(cluster)
        assert run is not None
        assert controller.mode is ViewMode.TRANSITIONING

        frames = controller.run_navigation()
        assert len(frames) == len(run.steps)
        assert all(f.mode is ViewMode.TRANSITIONING for f in frames[:-1])
        assert controller.mode is ViewMode.IDLE
        assert controller.camera.altitude == min(WORLD_CAMERA.altitude, zoom_to_altitude(expansion_zoom))
        assert controller.camera.center == pytest.approx((cluster.lng, cluster.lat))

    def test_altitudes_descend(self, controller):
        """Test that drill-in keyframes never climb."""
        frame = controller.set_camera(WORLD_CAMERA)
        controller.click_cluster(frame.clusters[0])
        altitudes = [f.camera.altitude for f in controller.run_navigation()]
        assert altitudes == sorted(altitudes, reverse=True)

    def test_coincident_pair_spiderfied(self, coincident_pair):
        """Test that drilling into coincident nodes ends spiderfied."""
        ctrl = ClusteringController()
        ctrl.load_nodes(coincident_pair)
        frame = ctrl.set_camera(PARIS_CAMERA)
        (cluster,) = frame.clusters

        ctrl.click_cluster(cluster)
        frames = ctrl.run_navigation()
        assert ctrl.mode is ViewMode.SPIDERFIED
        assert frames[-1].mode is ViewMode.SPIDERFIED
        assert {s.node.id for s in frames[-1].spiderfied} == {"twin-a", "twin-b"}
        assert len(ctrl.spiderfied) == 2

    def test_only_coincident_children_spiderfied(self, coincident_pair):
        """Test that a neighbour sharing the cluster but not the position stays put."""
        neighbour = NodeRecord(id="neighbour", lng=2.3523, lat=48.8566)
        ctrl = ClusteringController()
        ctrl.load_nodes(coincident_pair + [neighbour])
        (cluster,) = ctrl.set_camera(PARIS_CAMERA).clusters
        assert cluster.point_count == 3

        expansion = ctrl.index.expand_cluster(cluster)
        assert expansion.at_finest_level
        assert expansion.spiderfy

        ctrl.click_cluster(cluster)
        ctrl.run_navigation()
        assert ctrl.mode is ViewMode.SPIDERFIED
        assert {s.node.id for s in ctrl.spiderfied} == {"twin-a", "twin-b"}

    def test_gesture_closes_spider(self, coincident_pair):
        """Test that a camera move closes the spiderfied group."""
        ctrl = ClusteringController()
        ctrl.load_nodes(coincident_pair)
        (cluster,) = ctrl.set_camera(PARIS_CAMERA).clusters
        ctrl.click_cluster(cluster)
        ctrl.run_navigation()

        frame = ctrl.set_camera(CameraState(lat=48.8566, lng=2.3522, altitude=2.5))
        assert ctrl.mode is ViewMode.IDLE
        assert frame.spiderfied == ()

    def test_auto_spiderfy_at_finest_zoom(self, coincident_pair):
        """Test that coincident nodes are fanned out at the finest zoom without a click."""
        ctrl = ClusteringController()
        ctrl.load_nodes(coincident_pair)
        frame = ctrl.set_camera(CameraState(lat=48.8566, lng=2.3522, altitude=0.0))
        assert frame.mode is ViewMode.IDLE
        assert len(frame.spiderfied) == 2

    def test_gesture_aborts_navigation(self, controller):
        """Test that a user camera move stops the running navigation."""
        frame = controller.set_camera(WORLD_CAMERA)
        run = controller.click_cluster(frame.clusters[0])
        controller.step()
        controller.set_camera(PARIS_CAMERA)
        assert run.is_aborted
        assert controller.navigation is None
        assert controller.step() is None
        assert controller.mode is ViewMode.IDLE

    def test_new_click_replaces_navigation(self, controller):
        """Test that a second click aborts the first navigation."""
        frame = controller.set_camera(WORLD_CAMERA)
        first = controller.click_cluster(frame.clusters[0])
        controller.step()
        second = controller.click_cluster(controller.last_frame.clusters[0])
        assert first.is_aborted
        assert controller.navigation is second

    def test_stale_cluster_click(self, controller, city_nodes):
        """Test that a click on a cluster from a replaced index is ignored."""
        cluster = controller.set_camera(WORLD_CAMERA).clusters[0]
        controller.load_nodes(city_nodes)
        assert controller.click_cluster(cluster) is None
        assert controller.mode is ViewMode.IDLE

    def test_abort_navigation(self, controller):
        frame = controller.set_camera(WORLD_CAMERA)
        controller.click_cluster(frame.clusters[0])
        controller.abort_navigation()
        assert controller.mode is ViewMode.IDLE
        assert controller.step() is None

    def test_click_without_index(self):
        cluster = ClusterFeature(cluster_id=0, lng=0.0, lat=0.0, point_count=2, level=1, zoom=0)
        ctrl = ClusteringController(AtlasConfig(clustering=ClusterConfig()))
        assert ctrl.click_cluster(cluster) is None


class TestDrillOut:
    """Tests for zoom out and reset."""

    def test_zoom_out_raises_altitude(self, controller):
        controller.set_camera(CameraState(lat=48.8566, lng=2.3522, altitude=0.1))
        controller.zoom_out()
        controller.run_navigation()
        assert controller.camera.altitude > 0.1
        assert controller.camera.center == (2.3522, 48.8566)

    def test_reset_view(self, controller):
        """Test that reset navigates back to the overview."""
        controller.set_camera(PARIS_CAMERA)
        controller.reset_view()
        controller.run_navigation()
        nav = controller.config.navigation
        assert controller.camera.center == (nav.home_lng, nav.home_lat)
        assert controller.camera.altitude == nav.home_altitude
        assert controller.mode is ViewMode.IDLE
