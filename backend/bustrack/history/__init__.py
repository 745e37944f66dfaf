"""
History Package

Daily rollups of raw location samples and their retention.
"""

from .rollups import LocationHistory

__all__ = ["LocationHistory"]
