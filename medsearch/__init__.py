"""
Resilient medication search: RxNorm catalog, circuit breaker, tiered cache.
"""

__version__ = "0.1.0"
