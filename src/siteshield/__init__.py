"""
siteshield: request filtering and per-site protection state for browser tabs.
"""

from .filtering import FilterEngine, create_engine

__all__ = ["FilterEngine", "create_engine"]
