"""Exceptions raised by the GlassNet monitoring core.

Only startup problems (bad configuration, no scan strategy for this
platform) reach the caller. Everything raised during a scan cycle is
caught inside the cycle and degrades to an empty or partial batch.
"""


class GlassNetError(Exception):
    """Base class for all GlassNet errors."""


class CommandError(GlassNetError):
    """An inspection command could not be run or did not finish in time."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"{command}: {reason}")
        self.command = command
        self.reason = reason


class UnsupportedPlatformError(GlassNetError):
    """No scan strategy is registered for the running platform."""


class ConfigError(GlassNetError):
    """Configuration value is missing or out of range."""
