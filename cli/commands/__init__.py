"""
PNode Atlas CLI Commands

This package contains all CLI subcommands for the patlas tool.

Commands:
    query    - Clusters and nodes visible from a camera
    expand   - Children of a cluster
    navigate - Camera keyframes for drill-in and drill-out
    spiderfy - Radial layout of coincident nodes
    stats    - Per-zoom statistics of the index
"""

from cli.commands import (
    query,
    expand,
    navigate,
    spiderfy,
    stats,
)

__all__ = [
    "query",
    "expand",
    "navigate",
    "spiderfy",
    "stats",
]
