"""
Archive Layer.

This package wraps the external 7-Zip tool and builds mod inspection on top of
it: listing parsing, primary entry detection, embedded metadata and previews.
"""

from .backend import SevenZipBackend
from .inspector import ArchiveInspector, compute_primary, parse_listing

__all__ = ["ArchiveInspector", "SevenZipBackend", "compute_primary", "parse_listing"]
