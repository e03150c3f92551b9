"""Configuration for tabkeeper."""

from __future__ import annotations

from tabkeeper.config.base import TabKeeperSettings, get_settings, lazy_settings, settings

__all__ = ['TabKeeperSettings', 'get_settings', 'lazy_settings', 'settings']
