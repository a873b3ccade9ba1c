"""
Application package initializer.

Each domain (posts, marketplace, green points, etc.) exposes a router in
``api/v1/endpoints`` backed by a service class in ``services``.  Routers
are grouped under ``api/<version>/`` so new versions can be added
without breaking existing clients.
"""

from .main import app  # noqa: F401
