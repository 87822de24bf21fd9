"""Exceptions raised by shiori."""

from __future__ import annotations


class ShioriError(Exception):
    """Base error for shiori failures surfaced to the user."""


class ConfigError(ShioriError):
    """Raised when a configuration source cannot be parsed."""


__all__ = ["ConfigError", "ShioriError"]
