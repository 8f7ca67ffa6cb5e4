"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import load_settings_conf, validate_settings, SettingsError, DEFAULTS

__all__ = ['get_settings', 'load_settings_conf', 'validate_settings', 'SettingsError', 'DEFAULTS']

_settings: Optional[Dict[str, Any]] = None

def get_settings(settings_path: str = ".") -> Dict[str, Any]:
    """Load settings once and return the cached copy.

    Args:
        settings_path: Directory containing settings.conf

    Returns:
        Validated settings dictionary

    Raises:
        SettingsError: If the configuration is invalid
    """
    global _settings

    if _settings is None:
        try:
            _settings = load_settings_conf(settings_path)
        except SettingsError as e:
            # Re-raise the error but provide more context
            raise SettingsError(
                f"Configuration Error\n"
                "=================\n\n"
                f"{str(e)}\n\n"
                "Please ensure settings.conf (or PUNKS_* environment variables) are properly configured.\n"
                "See settings.conf.example for the recognized options."
            )
    return _settings
