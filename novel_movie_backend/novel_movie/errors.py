"""
Error taxonomy for the scene pipeline, playback and persistence layers.
"""
from typing import List, Optional


class NovelMovieError(Exception):
    """Base exception for all novel movie errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(NovelMovieError):
    """Input rejected before any state mutation or network call."""
    pass


class BusyError(ValidationError):
    """The requested asset kind is already being generated for this scene."""
    pass


class GenerationError(NovelMovieError):
    """A generation port call failed or returned an unusable result."""
    pass


class NarrationError(GenerationError):
    """Every narration segment of a scene failed to synthesize."""
    pass


class PartialNarrationError(NovelMovieError):
    """Some, but not all, narration segments failed. Never fatal."""

    def __init__(self, failed_parts: List[int], total: int):
        self.failed_parts = list(failed_parts)
        self.total = total
        super().__init__(
            f"{len(self.failed_parts)} of {total} narration segments failed",
            {"failed_parts": self.failed_parts},
        )


class StorageError(NovelMovieError):
    """Persisting or reading a project snapshot failed."""
    pass
