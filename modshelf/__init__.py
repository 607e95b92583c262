"""
modshelf: a per-character mod repository manager driven by filename conventions.
"""

__version__ = "0.1.0"
