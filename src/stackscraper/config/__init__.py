"""
Configuration for stackscraper.

Settings are environment-driven (pydantic-settings); see Settings for the
recognised variables.
"""

from stackscraper.config.settings import Settings, load_settings

__all__ = [
    "Settings",
    "load_settings",
]
