"""Exception hierarchy for localpilot.

Library code raises these; the InferenceService facade converts them into
strings / result objects at the edge.
"""

from __future__ import annotations


class LocalPilotError(Exception):
    """Base class for all localpilot errors."""


class ConfigError(LocalPilotError, ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


class ModelLoadError(LocalPilotError):
    """Model weights or the inference context could not be created."""


class ResourceExhaustedError(LocalPilotError):
    """No free sequence is left in the inference context."""


class SequenceDisposedError(LocalPilotError):
    """A sequence was used after it was released."""


class SessionNotFoundError(LocalPilotError):
    """No live session exists for the id and creation was not requested."""


class IndexCorruptionError(LocalPilotError):
    """The persistent vector index is unreadable and must be rebuilt."""


class IndexNotReadyError(LocalPilotError):
    """The retrieval index has not been initialised (or was dropped)."""


class DownloadError(LocalPilotError):
    """A model download failed or produced a file of the wrong size."""
