"""Configuration package for marketplace payments."""
from .settings import GatewayKind, Settings, get_settings

__all__ = ["GatewayKind", "Settings", "get_settings"]
