"""Configuration module."""

from botbridge.config.constants import BRIDGE, BridgeConstants
from botbridge.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "BridgeConstants", "BRIDGE"]
