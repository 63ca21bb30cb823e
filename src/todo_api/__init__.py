"""
Todo API package.

FastAPI service exposing CRUD operations for todo items stored in MongoDB.
The ASGI application lives in `todo_api.main:app`.
"""

__version__ = "1.0.0"
