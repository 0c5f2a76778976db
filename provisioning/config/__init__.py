"""Configuration package for the provisioning service."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
