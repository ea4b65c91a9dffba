"""
Application configuration.
"""

from .settings import AppSettings, config_manager, get_settings, load_config

__all__ = ["AppSettings", "config_manager", "get_settings", "load_config"]
