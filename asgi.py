"""
asgi.py -- ASGI entry point for Nevi.

api/ and web/ never import each other; this module joins them. The web
routes share app.state and the session middleware registered in api/main.py.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Web"])
