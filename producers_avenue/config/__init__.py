"""Configuration package for the marketplace API."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
