"""
ASGI entry point: ``uvicorn docrag.asgi:app``.
"""
from .main import create_app

app = create_app()
