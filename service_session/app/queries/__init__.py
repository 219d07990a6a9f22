"""
Typed data accessors backed by the shared query cache.
"""

from .accessors import QueryAccessors

__all__ = ["QueryAccessors"]
