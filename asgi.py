"""
asgi.py -- ASGI entry point for the SRP auth server.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
