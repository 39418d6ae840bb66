"""
HTTP transport for the LRM catalog.

- create_app: FastAPI application factory
- ApiSettings: transport settings (CATALOG_API_* environment variables)
"""

from .app import create_app
from .config import ApiSettings

__all__ = ["create_app", "ApiSettings"]
