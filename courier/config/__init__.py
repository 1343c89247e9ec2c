"""Channel configuration helpers."""

from .settings import ChannelSettings, RateLimitSettings, ReconnectSettings, get_settings

__all__ = ["ChannelSettings", "RateLimitSettings", "ReconnectSettings", "get_settings"]
