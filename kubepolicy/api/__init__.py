"""REST API layer for KubePolicy.

Exposes:
    create_app -- FastAPI application factory.
"""

from kubepolicy.api.app import create_app

__all__ = ["create_app"]
