"""Configuration for Manowar."""

from .settings import PricingSettings, Settings, get_settings

__all__ = ["PricingSettings", "Settings", "get_settings"]
