"""
Node Sources.

The node list is owned by an external data source (a periodic fetch of
the pNode API); this module defines the interface the controller consumes
plus implementations for in-memory lists and JSON snapshot files:
- NodeSnapshot: a versioned node list
- NodeSource: abstract fetcher
- StaticNodeSource / JsonFileNodeSource: concrete sources
- node_from_pnode: conversion of a raw pNode API record

Snapshot files are either a JSON list of nodes or an object with a
``nodes`` list. Entries are plain ``{id, lng, lat, metadata}`` records or
raw pNode records (``ip``, ``pubkey``, ``stats``, ``_score``, ...).
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from core.clustering.features import NodeRecord

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3


def compute_node_set_version(nodes: Iterable[NodeRecord]) -> str:
    """
    Fingerprint of a node set.

    Covers ids, positions and metadata so any change to the set gives a
    different version.

    Returns:
        Hash string (16 characters)
    """
    payload = [[node.id, node.lng, node.lat, dict(node.metadata)] for node in nodes]
    data = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class NodeSnapshot:
    """
    A node list at a point in time.

    Attributes:
        version: Fingerprint of the node set
        nodes: Node records
        source: Description of where the nodes came from
    """

    version: str
    nodes: tuple
    source: str = ""

    @classmethod
    def of(cls, nodes: Iterable[NodeRecord], source: str = "") -> "NodeSnapshot":
        nodes = tuple(nodes)
        return cls(version=compute_node_set_version(nodes), nodes=nodes, source=source)

    def __len__(self) -> int:
        return len(self.nodes)


class NodeSource(ABC):
    """Supplier of node snapshots."""

    @abstractmethod
    def fetch(self) -> NodeSnapshot:
        """Return the current node set."""
        pass


class StaticNodeSource(NodeSource):
    """In-memory node list, replaceable between fetches."""

    def __init__(self, nodes: Iterable[NodeRecord] = ()):
        self._snapshot = NodeSnapshot.of(nodes, source="memory")

    def update(self, nodes: Iterable[NodeRecord]) -> None:
        self._snapshot = NodeSnapshot.of(nodes, source="memory")

    def fetch(self) -> NodeSnapshot:
        return self._snapshot


class JsonFileNodeSource(NodeSource):
    """
    Node snapshot read from a JSON file on every fetch.

    Entries that cannot be converted are skipped with a warning.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def fetch(self) -> NodeSnapshot:
        if not self.path.exists():
            raise FileNotFoundError(f"Node snapshot not found: {self.path}")
        with open(self.path, "r") as f:
            data = json.load(f)
        nodes = parse_nodes(data)
        logger.info(f"Loaded {len(nodes)} nodes from {self.path}")
        return NodeSnapshot.of(nodes, source=str(self.path))


def parse_nodes(data: Union[Sequence[Dict[str, Any]], Dict[str, Any]]) -> List[NodeRecord]:
    """Convert a decoded snapshot (list or ``{"nodes": [...]}``) into records."""
    if isinstance(data, dict):
        data = data.get("nodes", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of nodes, got {type(data).__name__}")

    nodes = []
    skipped = 0
    for entry in data:
        node = _convert(entry)
        if node is None:
            skipped += 1
        else:
            nodes.append(node)
    if skipped:
        logger.warning(f"Skipped {skipped} snapshot entries without id or position")
    return nodes


def _convert(entry: Any) -> Optional[NodeRecord]:
    if not isinstance(entry, dict):
        return None
    if "stats" in entry or "_score" in entry:
        return node_from_pnode(entry)
    try:
        return NodeRecord.from_dict(entry)
    except (TypeError, ValueError) as e:
        logger.debug(f"Skipping snapshot entry: {e}")
        return None


def node_from_pnode(pnode: Dict[str, Any]) -> Optional[NodeRecord]:
    """
    Convert a raw pNode API record into a node record.

    Returns None for nodes without geolocation or identity.

    Metadata keys: health (from ``_score``), storage (committed GB), city,
    country, country_code, operator, uptime, cpu, ram (percent used),
    version, status, pubkey, ip, has_active_streams.
    """
    lat = pnode.get("lat")
    lng = pnode.get("lng")
    node_id = pnode.get("pubkey") or pnode.get("ip")
    if lat is None or lng is None or node_id is None:
        return None

    stats = pnode.get("stats") or {}
    ram_used = stats.get("ram_used") or 0
    ram_total = stats.get("ram_total") or 0

    metadata = {
        "ip": pnode.get("ip"),
        "pubkey": pnode.get("pubkey"),
        "health": pnode.get("_score") or 0,
        "storage": (stats.get("storage_committed") or 0) / BYTES_PER_GB,
        "city": pnode.get("city"),
        "country": pnode.get("country"),
        "country_code": pnode.get("country_code"),
        "operator": pnode.get("operator"),
        "uptime": stats.get("uptime") or 0,
        "cpu": stats.get("cpu_percent") or 0,
        "ram": (ram_used / ram_total) * 100 if ram_used and ram_total else 0,
        "version": pnode.get("version") or stats.get("version"),
        "status": pnode.get("status") or "inactive",
        "has_active_streams": (stats.get("active_streams") or 0) > 0,
    }
    try:
        return NodeRecord(id=str(node_id), lng=float(lng), lat=float(lat), metadata=metadata)
    except (TypeError, ValueError):
        return None


def load_nodes(path: Union[str, Path]) -> NodeSnapshot:
    """Read a node snapshot file."""
    return JsonFileNodeSource(path).fetch()
