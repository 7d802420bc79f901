"""
asgi.py -- ASGI entry point for the user management service.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
