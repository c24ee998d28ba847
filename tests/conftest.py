"""
Pytest configuration and fixtures for pnode_atlas tests.

Markers:
    @pytest.mark.slow - Tests that take longer to run
    @pytest.mark.integration - Tests spanning several components
    @pytest.mark.cli - Command-line interface tests

Usage:
    pytest -m "not slow"         # Skip slow tests
    pytest -m cli                # Run only CLI tests
    pytest -m integration        # Run integration tests
"""

import json
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.clustering.features import NodeRecord  # noqa: E402


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: Slow-running tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "cli: Command-line interface tests")


def pytest_collection_modifyitems(config, items):
    """Auto-apply markers based on test file names and test names."""
    for item in items:
        # Mark based on file name
        if "cli" in item.fspath.basename:
            item.add_marker(pytest.mark.cli)
        if "controller" in item.fspath.basename:
            item.add_marker(pytest.mark.integration)

        # Mark slow tests
        test_name = item.name.lower()
        if "large" in test_name or "stress" in test_name or "10k" in test_name:
            item.add_marker(pytest.mark.slow)


def make_nodes(positions, prefix="node"):
    """Node records from (lng, lat) pairs."""
    return [
        NodeRecord(id=f"{prefix}-{i}", lng=float(lng), lat=float(lat))
        for i, (lng, lat) in enumerate(positions)
    ]


@pytest.fixture
def node_factory():
    """Factory building node records from (lng, lat) pairs."""
    return make_nodes


@pytest.fixture
def uniform_nodes_10k():
    """10,000 nodes uniformly scattered over central Europe."""
    rng = np.random.default_rng(42)
    lngs = rng.uniform(-5.0, 25.0, 10000)
    lats = rng.uniform(40.0, 55.0, 10000)
    return make_nodes(zip(lngs, lats))


@pytest.fixture
def coincident_pair():
    """Two nodes at exactly the same position."""
    return [
        NodeRecord(id="twin-a", lng=2.3522, lat=48.8566, metadata={"health": 90}),
        NodeRecord(id="twin-b", lng=2.3522, lat=48.8566, metadata={"health": 55}),
    ]


@pytest.fixture
def city_nodes():
    """Small clustered set: three cities with a handful of nodes each."""
    nodes = []
    cities = [
        ("Paris", "France", 2.35, 48.85, 5),
        ("Berlin", "Germany", 13.40, 52.52, 4),
        ("Tokyo", "Japan", 139.69, 35.69, 3),
    ]
    for city, country, lng, lat, count in cities:
        for i in range(count):
            nodes.append(
                NodeRecord(
                    id=f"{city.lower()}-{i}",
                    lng=lng + i * 0.01,
                    lat=lat + i * 0.01,
                    metadata={
                        "city": city,
                        "country": country,
                        "health": 50 + i * 10,
                        "storage": 1.5,
                    },
                )
            )
    return nodes


@pytest.fixture
def snapshot_file(tmp_path, city_nodes, coincident_pair):
    """JSON snapshot with the city nodes and a coincident pair."""
    path = tmp_path / "nodes.json"
    data = {"nodes": [node.to_dict() for node in city_nodes + coincident_pair]}
    path.write_text(json.dumps(data))
    return path
