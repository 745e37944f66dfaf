"""
Crowd-sourced bus tracking backend

Location ingestion, device trust scoring and position aggregation for
buses tracked from passengers' phones.
"""

__version__ = "1.0.0"
