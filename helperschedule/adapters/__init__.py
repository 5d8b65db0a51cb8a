"""
Adapters layer - sync gateway implementations.
"""

from .memory_gateway import InMemorySyncGateway

__all__ = ["InMemorySyncGateway"]
