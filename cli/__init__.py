"""
PNode Atlas CLI Package

Command-line interface for the adaptive node clustering engine.
Provides commands for querying, expanding and navigating node clusters.

Usage:
    patlas query nodes.json --lat 50 --lng 10 --altitude 1.2
    patlas expand nodes.json 42
    patlas navigate nodes.json --cluster 42
    patlas spiderfy nodes.json --all
    patlas stats nodes.json
"""

__version__ = "0.1.0"
__author__ = "PNode Atlas Team"

from cli.main import app

__all__ = ["app", "__version__"]
