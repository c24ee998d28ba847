"""
Tests for Camera Geometry (core/clustering/geometry.py).

Covers the altitude/zoom mapping, visible bounds, bounds expansion,
bounding box behavior across the antimeridian and the Web Mercator helpers.
"""

import math

import numpy as np
import pytest

from core.clustering.exceptions import InvalidCameraStateError
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
    lat_to_y,
    lng_to_x,
    project_points,
    x_to_lng,
    y_to_lat,
    zoom_to_altitude,
)


class TestZoomScale:
    """Tests for ZoomScale configuration."""

    def test_defaults(self):
        """Test default scale bounds."""
        scale = ZoomScale()
        assert scale.min_zoom == 0
        assert scale.max_zoom == 20

    def test_invalid_bounds(self):
        """Test that inverted zoom bounds are rejected."""
        with pytest.raises(ValueError):
            ZoomScale(min_zoom=5, max_zoom=3)

    def test_reference_below_max_rejected(self):
        """Test that reference zoom must cover max zoom."""
        with pytest.raises(ValueError):
            ZoomScale(max_zoom=20, reference_zoom=18)

    def test_band_contains_representative_altitude(self):
        """Test that each band contains its representative altitude."""
        for zoom in range(0, 21):
            low, high = DEFAULT_ZOOM_SCALE.band(zoom)
            altitude = zoom_to_altitude(zoom)
            assert low <= altitude < high or (zoom == 0 and altitude >= low)


class TestAltitudeToZoom:
    """Tests for altitude_to_zoom and zoom_to_altitude."""

    def test_ground_level_is_max_zoom(self):
        """Test that altitude 0 maps to the highest zoom."""
        assert altitude_to_zoom(0.0) == 20

    def test_high_altitude_saturates(self):
        """Test that very high altitudes saturate at the lowest zoom."""
        assert altitude_to_zoom(1e9) == 0

    def test_globe_overview(self):
        """Test the default home altitude maps to a low zoom."""
        assert altitude_to_zoom(2.5) <= 7

    def test_monotonic_non_increasing(self):
        """Test that zoom never increases as altitude grows."""
        altitudes = np.linspace(0.0, 20.0, 2001)
        zooms = [altitude_to_zoom(a) for a in altitudes]
        assert all(a >= b for a, b in zip(zooms, zooms[1:]))

    def test_round_trip_every_zoom(self):
        """Test that zoom_to_altitude lands back in the same zoom band."""
        for zoom in range(0, 21):
            assert altitude_to_zoom(zoom_to_altitude(zoom)) == zoom

    def test_round_trip_from_altitude(self):
        """Test that an altitude's representative altitude maps to the same zoom."""
        for altitude in [0.0, 0.01, 0.05, 0.3, 1.2, 2.5, 4.0, 50.0]:
            zoom = altitude_to_zoom(altitude)
            assert altitude_to_zoom(zoom_to_altitude(zoom)) == zoom

    def test_zoom_to_altitude_clamps(self):
        """Test that out-of-range zooms are clamped."""
        assert zoom_to_altitude(-5) == zoom_to_altitude(0)
        assert zoom_to_altitude(99) == zoom_to_altitude(20)

    def test_negative_altitude_rejected(self):
        """Test that negative altitude raises."""
        with pytest.raises(InvalidCameraStateError):
            altitude_to_zoom(-0.1)

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_altitude_rejected(self, value):
        """Test that non-finite altitude raises."""
        with pytest.raises(InvalidCameraStateError):
            altitude_to_zoom(value)

    def test_invalid_camera_state_is_value_error(self):
        """Test that camera errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            altitude_to_zoom(-1)

    def test_custom_scale(self):
        """Test a scale with a narrower zoom range."""
        scale = ZoomScale(min_zoom=2, max_zoom=10, reference_zoom=12)
        assert altitude_to_zoom(0.0, scale) == 10
        assert altitude_to_zoom(1e6, scale) == 2


class TestCameraState:
    """Tests for CameraState validation."""

    def test_defaults(self):
        """Test default camera."""
        camera = CameraState()
        assert camera.altitude == 2.5
        assert camera.center == (0.0, 0.0)

    def test_rejects_nan(self):
        """Test that NaN coordinates are rejected."""
        with pytest.raises(InvalidCameraStateError):
            CameraState(lat=math.nan)

    def test_rejects_out_of_range_latitude(self):
        """Test that latitude beyond the poles is rejected."""
        with pytest.raises(InvalidCameraStateError):
            CameraState(lat=91.0)

    def test_rejects_negative_altitude(self):
        """Test that negative altitude is rejected."""
        with pytest.raises(InvalidCameraStateError):
            CameraState(altitude=-1.0)

    def test_moved_to_keeps_viewport(self):
        """Test that moving keeps heading and aspect."""
        camera = CameraState(heading=30.0, aspect_ratio=2.0)
        moved = camera.moved_to(10.0, 20.0, 0.5)
        assert moved.heading == 30.0
        assert moved.aspect_ratio == 2.0
        assert moved.center == (10.0, 20.0)


class TestVisibleBounds:
    """Tests for get_visible_bounds."""

    def test_centered_on_camera(self):
        """Test that bounds are centered on the camera."""
        bounds = get_visible_bounds(CameraState(lat=10.0, lng=20.0, altitude=0.5))
        assert bounds.center == pytest.approx((20.0, 10.0))

    def test_span_grows_with_altitude(self):
        """Test that higher altitude shows a larger area."""
        low = get_visible_bounds(CameraState(altitude=0.1))
        high = get_visible_bounds(CameraState(altitude=1.0))
        assert high.width > low.width
        assert high.height > low.height

    def test_aspect_ratio(self):
        """Test that longitude span follows the aspect ratio."""
        bounds = get_visible_bounds(CameraState(altitude=0.5, aspect_ratio=1.5))
        assert bounds.width == pytest.approx(bounds.height * 1.5)

    def test_globe_altitude_covers_every_longitude(self):
        """Test that a whole-globe camera sees nodes on the far side of the date line."""
        bounds = get_visible_bounds(CameraState(lat=20.0, lng=0.0, altitude=6.0))
        assert bounds.width == pytest.approx(360.0)
        assert bounds.normalized().to_list()[::2] == [-180.0, 180.0]
        assert bounds.contains_point(139.69, 35.68)
        assert bounds.contains_point(-170.0, 0.0)

    def test_longitude_span_not_limited_by_latitude_cap(self):
        """Test that the longitude span keeps growing after the latitude span saturates."""
        bounds = get_visible_bounds(CameraState(altitude=3.5))
        assert bounds.height == pytest.approx(180.0)
        assert bounds.width == pytest.approx(315.0)

    def test_never_degenerate_at_ground(self):
        """Test that altitude 0 still yields a non-empty box."""
        bounds = get_visible_bounds(CameraState(altitude=0.0))
        assert bounds.width > 0
        assert bounds.height > 0

    def test_latitude_clamped_at_poles(self):
        """Test that latitudes never exceed the poles."""
        bounds = get_visible_bounds(CameraState(lat=85.0, altitude=1.0))
        assert bounds.north == 90.0

    def test_heading_rotates_footprint(self):
        """Test that a 90 degree heading swaps the spans."""
        camera = CameraState(altitude=0.5, aspect_ratio=2.0)
        rotated = get_visible_bounds(CameraState(altitude=0.5, aspect_ratio=2.0, heading=90.0))
        plain = get_visible_bounds(camera)
        assert rotated.width == pytest.approx(plain.height)
        assert rotated.height == pytest.approx(plain.width)

    def test_stable(self):
        """Test that identical cameras give identical bounds."""
        camera = CameraState(lat=-33.9, lng=151.2, altitude=0.3)
        assert get_visible_bounds(camera) == get_visible_bounds(camera)

    def test_custom_footprint(self):
        """Test a footprint model with a different scale."""
        bounds = get_visible_bounds(
            CameraState(altitude=1.0), FootprintModel(degrees_per_altitude=10.0)
        )
        assert bounds.height == pytest.approx(10.0)


class TestExpandBounds:
    """Tests for expand_bounds."""

    def test_zero_ratio_is_identity(self):
        """Test that ratio 0 returns an equal box."""
        box = BoundingBox(west=-10, south=-5, east=10, north=5)
        assert expand_bounds(box, 0) == box

    def test_positive_ratio_strictly_contains(self):
        """Test that positive ratios strictly contain the input."""
        box = BoundingBox(west=-10, south=-5, east=10, north=5)
        for ratio in [0.001, 0.3, 1.0, 5.0]:
            assert expand_bounds(box, ratio).strictly_contains(box)

    def test_expansion_amount(self):
        """Test expansion by a ratio of each axis."""
        box = BoundingBox(west=0, south=0, east=10, north=20)
        expanded = expand_bounds(box, 0.5)
        assert expanded.to_list() == [-5, -10, 15, 30]

    def test_degenerate_box_grows(self):
        """Test that a zero-size box still strictly grows."""
        box = BoundingBox(west=5, south=5, east=5, north=5)
        assert expand_bounds(box, 0.3).strictly_contains(box)

    def test_polar_box_strictly_contained(self):
        """Test containment holds for boxes touching a pole."""
        box = BoundingBox(west=-10, south=80, east=10, north=90)
        assert expand_bounds(box, 0.3).strictly_contains(box)

    def test_antimeridian_box_keeps_its_area(self):
        """Test that a box crossing 180 degrees grows around the date line."""
        box = BoundingBox(west=170, south=-10, east=-170, north=10)
        expanded = expand_bounds(box, 0.1)
        assert expanded.normalized().crosses_antimeridian
        for lng in (168.5, 179.0, -179.0, -168.5):
            assert expanded.contains_point(lng, 0.0)
        assert not expanded.contains_point(0.0, 0.0)

    def test_antimeridian_box_wraps_to_full_range(self):
        """Test that padding wider than the globe covers every longitude."""
        box = BoundingBox(west=170, south=-10, east=-170, north=10)
        expanded = expand_bounds(box, 10.0)
        assert (expanded.west, expanded.east) == (-180.0, 180.0)
        assert expanded.contains_point(179.0, 0.0)
        assert expanded.contains_point(0.0, 0.0)

    def test_negative_ratio_rejected(self):
        """Test that negative ratios raise."""
        with pytest.raises(ValueError):
            expand_bounds(WORLD_BOUNDS, -0.1)

    def test_nan_ratio_rejected(self):
        """Test that NaN ratios raise."""
        with pytest.raises(ValueError):
            expand_bounds(WORLD_BOUNDS, math.nan)


class TestBoundingBox:
    """Tests for BoundingBox."""

    def test_width_antimeridian(self):
        """Test width across the antimeridian."""
        box = BoundingBox(west=170, south=-10, east=-170, north=10)
        assert box.crosses_antimeridian
        assert box.width == pytest.approx(20.0)

    def test_invalid_latitudes(self):
        """Test that south above north is rejected."""
        with pytest.raises(ValueError):
            BoundingBox(west=0, south=10, east=1, north=5)

    def test_normalized_wraps_longitudes(self):
        """Test that unwrapped longitudes are wrapped."""
        box = BoundingBox(west=170, south=0, east=190, north=10).normalized()
        assert box.west == 170
        assert box.east == pytest.approx(-170)
        assert box.crosses_antimeridian

    def test_normalized_full_world(self):
        """Test that a span of 360 degrees or more covers every longitude."""
        box = BoundingBox(west=-200, south=-100, east=200, north=100).normalized()
        assert box.to_list() == [-180.0, -90.0, 180.0, 90.0]

    def test_normalized_keeps_east_180(self):
        """Test that east=180 is not wrapped to -180."""
        box = BoundingBox(west=0, south=0, east=180, north=10).normalized()
        assert box.east == 180.0
        assert not box.crosses_antimeridian

    def test_normalized_zero_width_at_180(self):
        """Test that a zero-width box on the date line stays zero-width."""
        box = BoundingBox(west=180, south=0, east=180, north=10).normalized()
        assert (box.west, box.east) == (180.0, 180.0)
        assert box.contains_point(180.0, 5.0)
        assert not box.contains_point(0.0, 5.0)

    def test_contains_point_antimeridian(self):
        """Test point containment across the antimeridian."""
        box = BoundingBox(west=170, south=-10, east=-170, north=10)
        assert box.contains_point(175, 0)
        assert box.contains_point(-175, 0)
        assert not box.contains_point(0, 0)

    def test_intersects(self):
        """Test intersection including antimeridian boxes."""
        a = BoundingBox(west=170, south=-10, east=-170, north=10)
        b = BoundingBox(west=-175, south=0, east=-160, north=5)
        c = BoundingBox(west=0, south=0, east=10, north=5)
        assert a.intersects(b)
        assert not a.intersects(c)

    def test_list_round_trip(self):
        """Test to_list/from_list."""
        box = BoundingBox(west=-1, south=-2, east=3, north=4)
        assert BoundingBox.from_list(box.to_list()) == box

    def test_from_list_wrong_length(self):
        """Test from_list with wrong length."""
        with pytest.raises(ValueError):
            BoundingBox.from_list([1, 2, 3])

    def test_calculate_bounds(self):
        """Test bounds of a point set."""
        box = calculate_bounds([(1, 2), (-3, 5), (4, -1)])
        assert box.to_list() == [-3, -1, 4, 5]

    def test_calculate_bounds_empty(self):
        """Test that no points give the whole world."""
        assert calculate_bounds([]) == WORLD_BOUNDS


class TestProjection:
    """Tests for the Web Mercator helpers."""

    def test_origin(self):
        """Test that (0, 0) projects to the center of the unit square."""
        assert lng_to_x(0) == 0.5
        assert lat_to_y(0) == pytest.approx(0.5)

    def test_north_is_up(self):
        """Test that northern latitudes have smaller y."""
        assert lat_to_y(45) < lat_to_y(0) < lat_to_y(-45)

    def test_poles_clamped(self):
        """Test that the poles map to the square edges."""
        assert lat_to_y(90) == 0.0
        assert lat_to_y(-90) == 1.0

    def test_inverse(self):
        """Test that the inverse functions recover the inputs."""
        for lng, lat in [(0, 0), (-120.5, 33.3), (179.9, -60.0)]:
            assert x_to_lng(lng_to_x(lng)) == pytest.approx(lng)
            assert y_to_lat(lat_to_y(lat)) == pytest.approx(lat)

    def test_vectorized_matches_scalar(self):
        """Test that project_points agrees with the scalar helpers."""
        lngs = np.array([-180.0, -45.0, 0.0, 90.0, 180.0])
        lats = np.array([-90.0, -30.0, 0.0, 60.0, 90.0])
        xs, ys = project_points(lngs, lats)
        for i in range(len(lngs)):
            assert xs[i] == pytest.approx(lng_to_x(lngs[i]))
            assert ys[i] == pytest.approx(lat_to_y(lats[i]))
