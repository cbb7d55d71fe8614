"""
aigate - Resilient request routing for AI inference providers.

Shields the application from network variance, provider outages and rate
limits with circuit breakers, retry/backoff, response caching, bounded
priority queuing, and offline request replay.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("aigate")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "__version__",
]
