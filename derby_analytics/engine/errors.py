from __future__ import annotations


class RaceAnalysisError(Exception):
    """Base class for every error raised by the analytics engine."""


class DecodeError(RaceAnalysisError, ValueError):
    """The race payload is not a validly framed race log."""


class OutOfRangeError(RaceAnalysisError, IndexError):
    """A participant or frame index does not exist in the race log."""


class MalformedMetadataError(RaceAnalysisError, ValueError):
    """The companion participant metadata could not be parsed."""
