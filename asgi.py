"""
asgi.py -- ASGI entry point for SocialGate.

Kept separate from api/main.py so servers import one stable path regardless
of how the application module is organised.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
