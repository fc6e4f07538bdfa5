"""Exception taxonomy for the Voice Scam Shield pipeline.

All errors raised by the pipeline derive from :class:`ShieldError` so a
caller starting a session can catch one type.  The core computations
(feature extraction, cue scanning, fusion) never raise on well-formed
input; the only runtime failures come from the collaborators that
acquire audio or load the speech-to-text model.
"""

from __future__ import annotations


class ShieldError(Exception):
    """Base class for every error raised by voiceshield."""


class CaptureUnavailable(ShieldError):
    """The microphone could not be opened (missing device, permission denied)."""


class TranscriptionUnavailable(ShieldError):
    """The speech-to-text model could not be loaded on this platform."""


class MalformedFrame(ShieldError, ValueError):
    """An audio frame violated the extractor contract (sizes, shape, values)."""


class CueTableError(ShieldError):
    """A supported locale is missing one of its cue tables."""
