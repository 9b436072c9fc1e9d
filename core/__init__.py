"""Core agent capabilities for Hitbox."""
