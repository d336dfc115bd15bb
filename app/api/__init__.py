# File: app/api/__init__.py
"""
API package for Receets.

This package contains the API layer for the Receets application,
including endpoints, dependencies, and routing configuration.
"""

from app.api import deps, endpoints
from app.api.api import api_router
