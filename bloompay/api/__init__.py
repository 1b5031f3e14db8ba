"""API package for bloompay."""
from .main import create_app

__all__ = ["create_app"]
