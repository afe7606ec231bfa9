"""
asgi.py -- ASGI entry point for FitTrack.

Keeps the server command stable (`uvicorn asgi:app`) independent of where
the application object is assembled.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
