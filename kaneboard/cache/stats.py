"""
Cache statistics tracking.
"""
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)


class CacheStats:
    """Track cache hit/miss rates."""

    def __init__(self):
        self.hits = 0
        self.misses = 0

    def record_hit(self):
        self.hits += 1

    def record_miss(self):
        self.misses += 1

    def get_rate(self) -> float:
        """Hit rate as a float between 0.0 and 1.0."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def get_summary(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "total": self.hits + self.misses,
            "hit_rate_percent": f"{self.get_rate() * 100:.2f}%",
        }

    def reset(self):
        self.hits = 0
        self.misses = 0
        logger.info("Cache statistics reset")


# Global stats instance
stats = CacheStats()
