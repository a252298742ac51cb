"""Configuration module for the MedRAG document layer."""

from .settings import Settings, configure_logging, get_settings

__all__ = [
    "Settings",
    "configure_logging",
    "get_settings",
]
