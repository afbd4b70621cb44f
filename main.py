"""ASGI entry point: ``uvicorn main:app``.

Store and controller are configured through APPOP_* environment variables
(see appop/settings.py).
"""
from appop.api import create_app

app = create_app()
