"""
Aggregation Package

Fuses recent validated samples into the published current position per bus.

Usage:
    from bustrack.aggregation import PositionAggregator
"""

from .position_aggregator import PositionAggregator

__all__ = ["PositionAggregator"]
