"""
Popular packages digest cache.
"""

from .popularity import PopularityCache, PopularityCacheEntry, format_digest, heuristic_rank

__all__ = [
    "PopularityCache",
    "PopularityCacheEntry",
    "format_digest",
    "heuristic_rank"
]
