"""
Feature Model for the Node Globe.

Defines the records handed to the cluster index and the features it returns:
- NodeRecord: an immutable provider node with a position and opaque metadata
- ClusterFeature: an aggregate marker produced by the index
- NodeFeature: a single node returned as a leaf marker
- PointOrCluster: the tagged union of the two, discriminated by ``kind``

Example Usage:
    from core.clustering.features import NodeRecord, is_cluster

    node = NodeRecord(id="10.0.0.1", lng=2.35, lat=48.85, metadata={"health": 91})
    for feature in index.query(bounds, zoom):
        if is_cluster(feature):
            print(feature.cluster_id, feature.point_count)
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from core.clustering.exceptions import FeatureKindError


class FeatureKind(Enum):
    """Discriminator of the PointOrCluster union."""

    NODE = "node"
    CLUSTER = "cluster"


# =============================================================================
# Node Records
# =============================================================================


@dataclass(frozen=True)
class NodeRecord:
    """
    A provider node positioned on the globe.

    The metadata mapping is passed through untouched; it is excluded from
    equality and hashing so records compare by identity and position only.

    Attributes:
        id: Stable node identifier (pubkey or address)
        lng: Longitude in degrees
        lat: Latitude in degrees
        metadata: Opaque attributes (health, country, city, ...)
    """

    id: str
    lng: float
    lat: float
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))

    @property
    def is_valid(self) -> bool:
        """True if the position is finite and on the globe."""
        return (
            isinstance(self.lng, (int, float))
            and isinstance(self.lat, (int, float))
            and math.isfinite(self.lng)
            and math.isfinite(self.lat)
            and -180.0 <= self.lng <= 180.0
            and -90.0 <= self.lat <= 90.0
        )

    @property
    def position(self) -> Tuple[float, float]:
        """Position as (lng, lat)."""
        return (self.lng, self.lat)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeRecord":
        """
        Create a record from a snapshot entry.

        The id is taken from ``id``, ``pubkey`` or ``ip`` (first present).
        Position keys ``lng``/``lon``/``longitude`` and ``lat``/``latitude``
        are accepted. Everything else goes into metadata unless an explicit
        ``metadata`` mapping is given.
        """
        node_id = data.get("id") or data.get("pubkey") or data.get("ip")
        if node_id is None:
            raise ValueError("Node entry has no id, pubkey or ip")

        lng = _first_present(data, ("lng", "lon", "longitude"))
        lat = _first_present(data, ("lat", "latitude"))
        if lng is None or lat is None:
            raise ValueError(f"Node {node_id} has no position")

        if "metadata" in data:
            metadata = data["metadata"] or {}
        else:
            position_keys = {"id", "lng", "lon", "longitude", "lat", "latitude"}
            metadata = {k: v for k, v in data.items() if k not in position_keys}

        return cls(id=str(node_id), lng=float(lng), lat=float(lat), metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "lng": self.lng,
            "lat": self.lat,
            "metadata": dict(self.metadata),
        }


def _first_present(data: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[Any]:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


# =============================================================================
# Features
# =============================================================================


@dataclass(frozen=True)
class ClusterFeature:
    """
    Aggregate marker returned by the cluster index.

    Attributes:
        cluster_id: Index-local identifier, stable across identical builds
        lng: Centroid longitude
        lat: Centroid latitude
        point_count: Number of nodes aggregated
        level: Depth above the leaves (1 = only nodes below)
        zoom: Zoom level at which the cluster formed
        child_ids: Ids of child clusters (node children are not listed)
        generation: Build generation of the index that produced it
    """

    cluster_id: int
    lng: float
    lat: float
    point_count: int
    level: int
    zoom: int
    child_ids: Tuple[int, ...] = ()
    generation: int = 0
    kind: FeatureKind = field(default=FeatureKind.CLUSTER, init=False)

    @property
    def position(self) -> Tuple[float, float]:
        """Position as (lng, lat)."""
        return (self.lng, self.lat)

    @property
    def abbreviated_count(self) -> str:
        """Point count formatted for a marker label."""
        return format_cluster_count(self.point_count)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind.value,
            "cluster_id": self.cluster_id,
            "lng": self.lng,
            "lat": self.lat,
            "point_count": self.point_count,
            "point_count_abbreviated": self.abbreviated_count,
            "level": self.level,
            "zoom": self.zoom,
            "child_ids": list(self.child_ids),
            "generation": self.generation,
        }


@dataclass(frozen=True)
class NodeFeature:
    """
    Leaf marker wrapping a single node record.

    Attributes:
        node: The wrapped record
    """

    node: NodeRecord
    kind: FeatureKind = field(default=FeatureKind.NODE, init=False)

    @property
    def id(self) -> str:
        return self.node.id

    @property
    def lng(self) -> float:
        return self.node.lng

    @property
    def lat(self) -> float:
        return self.node.lat

    @property
    def position(self) -> Tuple[float, float]:
        """Position as (lng, lat)."""
        return self.node.position

    @property
    def point_count(self) -> int:
        return 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = self.node.to_dict()
        data["kind"] = self.kind.value
        return data


PointOrCluster = Union[NodeFeature, ClusterFeature]


def is_cluster(feature: PointOrCluster) -> bool:
    """True if the feature is a cluster."""
    return feature.kind is FeatureKind.CLUSTER


def is_node(feature: PointOrCluster) -> bool:
    """True if the feature is a single node."""
    return feature.kind is FeatureKind.NODE


def get_cluster_level(feature: PointOrCluster) -> int:
    """
    Hierarchy depth of a cluster feature.

    The level is distinct from the zoom at which the cluster formed: a
    cluster made only of nodes has level 1 and a cluster containing a
    level-1 cluster has level 2, wherever in the zoom range they appear.

    Args:
        feature: A cluster feature

    Returns:
        Level (>= 1)

    Raises:
        FeatureKindError: If a node feature is passed
    """
    if not is_cluster(feature):
        raise FeatureKindError(
            FeatureKind.CLUSTER.value,
            getattr(getattr(feature, "kind", None), "value", type(feature).__name__),
            operation="get_cluster_level",
        )
    return feature.level


def format_cluster_count(count: int) -> str:
    """
    Abbreviate a count for a marker label.

    Examples: 999 -> "999", 1234 -> "1.2k", 12345 -> "12k".
    """
    if count >= 10000:
        return f"{int(count / 1000 + 0.5)}k"
    if count >= 1000:
        return f"{count / 1000:.1f}k"
    return str(count)
