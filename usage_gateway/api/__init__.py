"""
HTTP surface for usage collection and event ingestion.
"""

from .app import create_app

__all__ = ["create_app"]
