"""
Orders API.

FastAPI surface over the ledger engine.
"""

from api.main import create_app
from api.router import router

__all__ = ["create_app", "router"]
