"""Configuration module for CDRGraph workers"""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
