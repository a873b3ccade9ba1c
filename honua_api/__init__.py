"""
Top-level package for the Honua API.

Honua is a social network with a sustainability marketplace attached:
posts, comments and follows on one side, products, orders and a green
points economy on the other.  All functionality lives in submodules
under ``app``.
"""

__all__ = []
