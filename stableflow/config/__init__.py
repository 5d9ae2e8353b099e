"""Configuration package."""

from stableflow.config.settings import (
    AppSettings,
    CloudinarySettings,
    FirebaseSettings,
    Settings,
    SolanaSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CloudinarySettings",
    "FirebaseSettings",
    "Settings",
    "SolanaSettings",
    "get_settings",
    "validate_all_settings",
]
