"""
Exception handlers for the Honua API.

``setup_exception_handlers`` registers the domain error translator and
the catch-all handler on a FastAPI application.
"""

from .global_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
