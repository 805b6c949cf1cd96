"""Shared service-layer exceptions."""

from __future__ import annotations


class ResolutionFailure(Exception):
    """Expected failure while resolving a quiz configuration into songs."""


class InvalidConfiguration(ResolutionFailure):
    """Configuration shape problem detected before any sampling begins."""


class SourceLoadError(ResolutionFailure):
    """A single song-list source could not be loaded."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(message)
        self.source = source
        self.message = message
