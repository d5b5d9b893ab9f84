"""ASGI entry point: uvicorn snapsecure_api.asgi:app"""

from snapsecure_api.main import create_app

app = create_app()
