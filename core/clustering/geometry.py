"""
Camera Geometry for the Node Globe.

Pure helpers shared by the cluster index, the controller and the navigation
builder:
- Altitude <-> zoom level conversion on a logarithmic scale
- Visible footprint (bounding box) from a camera state
- Bounding box expansion for prefetching
- Web Mercator projection into the unit square used by the index

Example Usage:
    from core.clustering.geometry import (
        CameraState,
        altitude_to_zoom,
        expand_bounds,
        get_visible_bounds,
    )

    camera = CameraState(lat=48.8, lng=2.3, altitude=0.4)
    zoom = altitude_to_zoom(camera.altitude)
    bounds = expand_bounds(get_visible_bounds(camera), 0.3)
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Tuple

import numpy as np

from core.clustering.exceptions import InvalidCameraStateError

logger = logging.getLogger(__name__)


# Smallest pad used when expanding a box that is flat along one axis
_MIN_EXPAND_EXTENT = 1e-6


# =============================================================================
# Zoom Scale
# =============================================================================


@dataclass(frozen=True)
class ZoomScale:
    """
    Logarithmic mapping between camera altitude and discrete zoom levels.

    The continuous zoom for an altitude ``a`` is
    ``reference_zoom - zoom_per_octave * log2(a / altitude_unit + 1)``.
    Discrete levels are the continuous value rounded half-up and clamped
    to ``[min_zoom, max_zoom]``.

    Attributes:
        min_zoom: Lowest zoom level (whole globe)
        max_zoom: Highest zoom level (street detail)
        reference_zoom: Continuous zoom at altitude 0
        zoom_per_octave: Zoom levels lost each time the altitude doubles
        altitude_unit: Altitude scale (globe radius units)
    """

    min_zoom: int = 0
    max_zoom: int = 20
    reference_zoom: float = 20.0
    zoom_per_octave: float = 3.0
    altitude_unit: float = 0.1

    def __post_init__(self):
        """Validate configuration."""
        if self.min_zoom < 0:
            raise ValueError(f"min_zoom must be >= 0, got {self.min_zoom}")
        if self.max_zoom < self.min_zoom:
            raise ValueError(
                f"max_zoom ({self.max_zoom}) must be >= min_zoom ({self.min_zoom})"
            )
        if self.reference_zoom < self.max_zoom:
            raise ValueError(
                f"reference_zoom ({self.reference_zoom}) must be >= max_zoom ({self.max_zoom})"
            )
        if not self.zoom_per_octave > 0:
            raise ValueError(f"zoom_per_octave must be > 0, got {self.zoom_per_octave}")
        if not self.altitude_unit > 0:
            raise ValueError(f"altitude_unit must be > 0, got {self.altitude_unit}")

    def continuous_zoom(self, altitude: float) -> float:
        """Unrounded, unclamped zoom for an altitude."""
        return self.reference_zoom - self.zoom_per_octave * math.log2(
            altitude / self.altitude_unit + 1.0
        )

    def clamp(self, zoom: int) -> int:
        """Clamp a zoom level into the scale bounds."""
        return max(self.min_zoom, min(self.max_zoom, int(zoom)))

    def band(self, zoom: int) -> Tuple[float, float]:
        """
        Altitude range ``[low, high)`` that maps to a zoom level.

        The lowest zoom extends to infinity and the highest zoom down to 0.
        """
        zoom = self.clamp(zoom)
        high = (
            math.inf
            if zoom == self.min_zoom
            else self._altitude_for_continuous(zoom - 0.5)
        )
        low = 0.0 if zoom == self.max_zoom else self._altitude_for_continuous(zoom + 0.5)
        return (max(0.0, low), high)

    def _altitude_for_continuous(self, zoom: float) -> float:
        return self.altitude_unit * (
            2.0 ** ((self.reference_zoom - zoom) / self.zoom_per_octave) - 1.0
        )

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "min_zoom": self.min_zoom,
            "max_zoom": self.max_zoom,
            "reference_zoom": self.reference_zoom,
            "zoom_per_octave": self.zoom_per_octave,
            "altitude_unit": self.altitude_unit,
        }


DEFAULT_ZOOM_SCALE = ZoomScale()


def _check_altitude(altitude: float) -> float:
    try:
        value = float(altitude)
    except (TypeError, ValueError):
        raise InvalidCameraStateError("altitude", altitude, "not a number")
    if not math.isfinite(value):
        raise InvalidCameraStateError("altitude", altitude, "must be finite")
    if value < 0:
        raise InvalidCameraStateError("altitude", altitude, "must be >= 0")
    return value


def altitude_to_zoom(altitude: float, scale: ZoomScale = DEFAULT_ZOOM_SCALE) -> int:
    """
    Convert camera altitude to a discrete zoom level.

    Higher altitude gives a lower (or equal) zoom. Values beyond the scale
    saturate at ``scale.min_zoom`` / ``scale.max_zoom``.

    Args:
        altitude: Camera altitude (non-negative, finite)
        scale: Zoom scale to use

    Returns:
        Zoom level

    Raises:
        InvalidCameraStateError: If altitude is negative or not finite
    """
    value = _check_altitude(altitude)
    zoom = math.floor(scale.continuous_zoom(value) + 0.5)
    return scale.clamp(zoom)


def zoom_to_altitude(zoom: int, scale: ZoomScale = DEFAULT_ZOOM_SCALE) -> float:
    """
    Representative camera altitude for a zoom level.

    Returns the altitude at the center of the zoom band, so that
    ``altitude_to_zoom(zoom_to_altitude(z)) == z`` for every in-range z.

    Args:
        zoom: Zoom level (clamped to the scale bounds)
        scale: Zoom scale to use

    Returns:
        Altitude
    """
    if isinstance(zoom, float) and not math.isfinite(zoom):
        raise InvalidCameraStateError("zoom", zoom, "must be finite")
    zoom = scale.clamp(zoom)
    return max(0.0, scale._altitude_for_continuous(zoom))


# =============================================================================
# Bounding Box
# =============================================================================


def wrap_longitude(lng: float) -> float:
    """Wrap a longitude into [-180, 180)."""
    return ((lng + 180.0) % 360.0) - 180.0


@dataclass(frozen=True)
class BoundingBox:
    """
    Geographic bounding box.

    Longitudes are not required to lie in [-180, 180]: camera footprints are
    kept unwrapped and normalized only at query time. A box with west > east
    crosses the antimeridian.

    Attributes:
        west: Western longitude
        south: Southern latitude
        east: Eastern longitude
        north: Northern latitude
    """

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self):
        """Validate coordinates."""
        for name in ("west", "south", "east", "north"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")
        if self.south > self.north:
            raise ValueError(f"south ({self.south}) must be <= north ({self.north})")

    @property
    def crosses_antimeridian(self) -> bool:
        """True if the box wraps across 180 degrees."""
        return self.west > self.east

    @property
    def width(self) -> float:
        """Get width in degrees."""
        if self.west <= self.east:
            return self.east - self.west
        else:
            # Antimeridian crossing
            return (180 - self.west) + (self.east + 180)

    @property
    def height(self) -> float:
        """Get height in degrees."""
        return self.north - self.south

    @property
    def area(self) -> float:
        """Get approximate area in square degrees."""
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        """Get center point (lng, lat)."""
        if self.west <= self.east:
            center_lng = (self.west + self.east) / 2
        else:
            center_lng = wrap_longitude((self.west + self.east) / 2 + 180)
        return (center_lng, (self.south + self.north) / 2)

    def normalized(self) -> "BoundingBox":
        """
        Wrap longitudes into [-180, 180] and clamp latitudes to [-90, 90].

        A box spanning 360 degrees or more becomes the full longitude range.
        The result may cross the antimeridian.
        """
        south = max(-90.0, min(90.0, self.south))
        north = max(-90.0, min(90.0, self.north))
        if not self.crosses_antimeridian and self.east - self.west >= 360.0:
            return BoundingBox(west=-180.0, south=south, east=180.0, north=north)
        west = 180.0 if self.west == 180.0 else wrap_longitude(self.west)
        east = 180.0 if self.east == 180.0 else wrap_longitude(self.east)
        return BoundingBox(west=west, south=south, east=east, north=north)

    def contains_point(self, lng: float, lat: float) -> bool:
        """Check if a point lies inside the (normalized) box."""
        box = self.normalized()
        if lat < box.south or lat > box.north:
            return False
        lng = 180.0 if lng == 180.0 else wrap_longitude(lng)
        if box.west <= box.east:
            return box.west <= lng <= box.east
        return lng >= box.west or lng <= box.east

    def contains(self, other: "BoundingBox") -> bool:
        """Check if this bbox fully contains another (no antimeridian crossing)."""
        return (
            other.west >= self.west
            and other.east <= self.east
            and other.south >= self.south
            and other.north <= self.north
        )

    def strictly_contains(self, other: "BoundingBox") -> bool:
        """Check containment with a margin on every side."""
        return (
            other.west > self.west
            and other.east < self.east
            and other.south > self.south
            and other.north < self.north
        )

    def intersects(self, other: "BoundingBox") -> bool:
        """Check if this bbox intersects with another."""
        a = self.normalized()
        b = other.normalized()
        if a.north < b.south or a.south > b.north:
            return False
        for aw, ae in a._lng_ranges():
            for bw, be in b._lng_ranges():
                if ae >= bw and aw <= be:
                    return True
        return False

    def _lng_ranges(self) -> List[Tuple[float, float]]:
        if self.west <= self.east:
            return [(self.west, self.east)]
        return [(self.west, 180.0), (-180.0, self.east)]

    def to_list(self) -> List[float]:
        """Convert to [west, south, east, north] list."""
        return [self.west, self.south, self.east, self.north]

    @classmethod
    def from_list(cls, coords: List[float]) -> "BoundingBox":
        """Create from [west, south, east, north] list."""
        if len(coords) != 4:
            raise ValueError(f"Expected 4 coordinates, got {len(coords)}")
        return cls(west=coords[0], south=coords[1], east=coords[2], north=coords[3])

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "west": self.west,
            "south": self.south,
            "east": self.east,
            "north": self.north,
        }


WORLD_BOUNDS = BoundingBox(west=-180.0, south=-90.0, east=180.0, north=90.0)


def expand_bounds(bounds: BoundingBox, margin_ratio: float) -> BoundingBox:
    """
    Grow a box symmetrically by a ratio of its size on each axis.

    Used to prefetch index data just outside the visible frame. Latitudes are
    not clamped here, so any positive ratio yields a box that strictly
    contains the input; queries clamp when they normalize.

    A box crossing the antimeridian comes back unwrapped (east + 360), or as
    the full longitude range once the padding wraps the globe.

    Args:
        bounds: Box to expand
        margin_ratio: Fraction of width/height added on each side

    Returns:
        Expanded BoundingBox (an equal box for ratio 0)

    Raises:
        ValueError: If margin_ratio is negative or not finite
    """
    if not math.isfinite(margin_ratio) or margin_ratio < 0:
        raise ValueError(f"margin_ratio must be a finite value >= 0, got {margin_ratio}")
    if margin_ratio == 0:
        return replace(bounds)

    lng_pad = (bounds.width or _MIN_EXPAND_EXTENT) * margin_ratio
    lat_pad = (bounds.height or _MIN_EXPAND_EXTENT) * margin_ratio
    south = bounds.south - lat_pad
    north = bounds.north + lat_pad
    if bounds.crosses_antimeridian:
        if bounds.width + 2 * lng_pad >= 360.0:
            return BoundingBox(west=-180.0, south=south, east=180.0, north=north)
        # Unwrapped east keeps west <= east; queries wrap it back
        return BoundingBox(
            west=bounds.west - lng_pad,
            south=south,
            east=bounds.east + 360.0 + lng_pad,
            north=north,
        )
    return BoundingBox(
        west=bounds.west - lng_pad,
        south=south,
        east=bounds.east + lng_pad,
        north=north,
    )


def calculate_bounds(points: Iterable[Tuple[float, float]]) -> BoundingBox:
    """
    Bounding box of (lng, lat) points; the whole world for no points.
    """
    points = list(points)
    if not points:
        return WORLD_BOUNDS
    lngs = [p[0] for p in points]
    lats = [p[1] for p in points]
    return BoundingBox(west=min(lngs), south=min(lats), east=max(lngs), north=max(lats))


# =============================================================================
# Camera State
# =============================================================================


@dataclass(frozen=True)
class CameraState:
    """
    Camera pose over the globe.

    Attributes:
        lat: Center latitude in degrees
        lng: Center longitude in degrees
        altitude: Camera altitude (globe radius units, >= 0)
        heading: Rotation of the viewport in degrees (0 = north up)
        aspect_ratio: Viewport width / height
    """

    lat: float = 0.0
    lng: float = 0.0
    altitude: float = 2.5
    heading: float = 0.0
    aspect_ratio: float = 1.5

    def __post_init__(self):
        """Validate camera values."""
        for name in ("lat", "lng", "heading", "aspect_ratio"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidCameraStateError(name, value, "must be finite")
        _check_altitude(self.altitude)
        if not -90.0 <= self.lat <= 90.0:
            raise InvalidCameraStateError("lat", self.lat, "must be within [-90, 90]")
        if self.aspect_ratio <= 0:
            raise InvalidCameraStateError("aspect_ratio", self.aspect_ratio, "must be > 0")

    @property
    def center(self) -> Tuple[float, float]:
        """Center as (lng, lat)."""
        return (self.lng, self.lat)

    def moved_to(self, lng: float, lat: float, altitude: float) -> "CameraState":
        """Same viewport at a new position and altitude."""
        return replace(self, lng=lng, lat=lat, altitude=altitude)

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "lat": self.lat,
            "lng": self.lng,
            "altitude": self.altitude,
            "heading": self.heading,
            "aspect_ratio": self.aspect_ratio,
        }


@dataclass(frozen=True)
class FootprintModel:
    """
    Approximation of the visible area for a camera altitude.

    Attributes:
        degrees_per_altitude: Latitude span per unit of altitude
        min_span_degrees: Smallest span, keeps boxes non-degenerate at altitude 0
    """

    degrees_per_altitude: float = 60.0
    min_span_degrees: float = 0.001

    def __post_init__(self):
        if not self.degrees_per_altitude > 0:
            raise ValueError(
                f"degrees_per_altitude must be > 0, got {self.degrees_per_altitude}"
            )
        if not self.min_span_degrees > 0:
            raise ValueError(f"min_span_degrees must be > 0, got {self.min_span_degrees}")


DEFAULT_FOOTPRINT = FootprintModel()


def get_visible_bounds(
    camera: CameraState,
    model: FootprintModel = DEFAULT_FOOTPRINT,
) -> BoundingBox:
    """
    Visible footprint of a camera.

    The latitude span grows linearly with altitude and the longitude span
    follows the viewport aspect ratio. Both come from the altitude and are
    capped separately, so a high camera sees every longitude even once the
    latitude span has saturated. A rotated viewport yields the axis-aligned
    box around the rotated footprint. Longitudes are left unwrapped;
    latitudes are clamped to the poles.

    Args:
        camera: Camera state
        model: Footprint approximation

    Returns:
        BoundingBox (never empty for a valid camera)
    """
    span = max(model.min_span_degrees, camera.altitude * model.degrees_per_altitude)
    lat_span = span
    lng_span = span * camera.aspect_ratio

    if camera.heading % 360.0:
        theta = math.radians(camera.heading)
        cos_t, sin_t = abs(math.cos(theta)), abs(math.sin(theta))
        lng_span, lat_span = (
            lng_span * cos_t + lat_span * sin_t,
            lng_span * sin_t + lat_span * cos_t,
        )
    lat_span = min(180.0, lat_span)
    lng_span = min(360.0, lng_span)

    return BoundingBox(
        west=camera.lng - lng_span / 2,
        south=max(-90.0, camera.lat - lat_span / 2),
        east=camera.lng + lng_span / 2,
        north=min(90.0, camera.lat + lat_span / 2),
    )


# =============================================================================
# Web Mercator Projection
# =============================================================================


def lng_to_x(lng: float) -> float:
    """Project longitude into [0, 1]."""
    return lng / 360.0 + 0.5


def lat_to_y(lat: float) -> float:
    """Project latitude into [0, 1] (0 = north pole)."""
    sin = math.sin(math.radians(lat))
    if sin >= 1.0:
        return 0.0
    if sin <= -1.0:
        return 1.0
    y = 0.5 - 0.25 * math.log((1 + sin) / (1 - sin)) / math.pi
    return min(1.0, max(0.0, y))


def x_to_lng(x: float) -> float:
    """Inverse of lng_to_x."""
    return (x - 0.5) * 360.0


def y_to_lat(y: float) -> float:
    """Inverse of lat_to_y."""
    y2 = (180.0 - y * 360.0) * math.pi / 180.0
    return 360.0 * math.atan(math.exp(y2)) / math.pi - 90.0


def project_points(lngs: np.ndarray, lats: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorized projection of (lng, lat) arrays into the unit square."""
    xs = np.asarray(lngs, dtype=np.float64) / 360.0 + 0.5
    sin = np.sin(np.radians(np.asarray(lats, dtype=np.float64)))
    with np.errstate(divide="ignore"):
        ys = 0.5 - 0.25 * np.log((1 + sin) / (1 - sin)) / np.pi
    return xs, np.clip(ys, 0.0, 1.0)
