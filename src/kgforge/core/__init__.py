"""Core modules for kgforge."""
from .config import Settings, load_settings, parse_lines, save_settings
from .log import mask_key, setup_logging

__all__ = [
    "Settings",
    "load_settings",
    "parse_lines",
    "save_settings",
    "mask_key",
    "setup_logging",
]
