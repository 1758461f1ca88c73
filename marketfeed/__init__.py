"""
marketfeed - resilient read-through caching for rate-limited market data APIs.
"""

__version__ = "0.1.0"
