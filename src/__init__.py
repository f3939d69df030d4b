# src/__init__.py — v1
"""evidencerank: hybrid retrieval and ranking for grounded answers."""

from evidencerank.version import __version__

__all__ = ["__version__"]
