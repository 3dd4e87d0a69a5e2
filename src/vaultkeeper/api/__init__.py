# Vault - Web API
#
# FastAPI backend exposing the group hierarchy, items, cloning and
# reference resolution.

from .main import app, start_api_server

__all__ = [
    "app",
    "start_api_server",
]
