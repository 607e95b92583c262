"""
Web Layer.

This package fetches pictures and mod updates over HTTP.
"""

from .downloader import Downloader

__all__ = ["Downloader"]
