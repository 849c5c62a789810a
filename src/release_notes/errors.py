"""Exceptions surfaced by the release-notes pipeline."""

from __future__ import annotations


class ReleaseNotesError(RuntimeError):
    """Base class for pipeline failures."""


class AuthorizationError(ReleaseNotesError):
    """Credentials were missing or rejected by an upstream API."""


class UpstreamUnavailable(ReleaseNotesError):
    """The source-control provider or prompt registry failed before any output."""


class ModelUnavailable(ReleaseNotesError):
    """The model call failed before the first chunk was produced."""


class StreamInterrupted(ReleaseNotesError):
    """The model stream failed after output had started."""

    def __init__(self, message: str, chunks_forwarded: int = 0):
        super().__init__(message)
        self.chunks_forwarded = chunks_forwarded
