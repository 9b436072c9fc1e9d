"""Configuration management for Hitbox."""

from .loader import SettingsLoader, load_settings, parse_prompt_file
from .schema import HitboxSettings

__all__ = ["HitboxSettings", "SettingsLoader", "load_settings", "parse_prompt_file"]
