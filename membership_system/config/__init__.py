"""Configuration package for the membership system."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
