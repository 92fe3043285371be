# HTTP API
# FastAPI application exposing the session manager

from auth_sessions.api.app import create_app

__all__ = ["create_app"]
