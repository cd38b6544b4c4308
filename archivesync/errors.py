"""
Error kinds surfaced to the caller of a download request.

Every request-level failure maps to a stable ``kind`` string and an
HTTP-style status used when the error is rendered into a response envelope.
"""

from typing import List, Optional


class ArchiveSyncError(Exception):
    """Base class for errors returned to the invoking caller."""

    kind = "INTERNAL_ERROR"
    status = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class MalformedRequest(ArchiveSyncError):
    """The request body could not be parsed or failed validation."""

    kind = "MALFORMED_REQUEST"
    status = 400


class ProfileNotFound(ArchiveSyncError):
    """The remote catalog source has no such user."""

    kind = "PROFILE_NOT_FOUND"
    status = 404

    def __init__(self, username: str, platform: str):
        super().__init__(f"Profile {username} not found on {platform}")
        self.username = username
        self.platform = platform


class UpstreamUnavailable(ArchiveSyncError):
    """The remote catalog source answered with an unexpected status."""

    kind = "UPSTREAM_UNAVAILABLE"
    status = 503
    retryable = True


class PersistenceError(ArchiveSyncError):
    """The ledger or session store failed outside the partial-acceptance protocol."""

    kind = "PERSISTENCE_FAILURE"
    status = 500


class FanoutError(ArchiveSyncError):
    """Publishing a download command failed; ``unsent`` lists the failed archive and the rest."""

    kind = "FANOUT_FAILURE"
    status = 500

    def __init__(
        self,
        message: str,
        published: Optional[List[str]] = None,
        unsent: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.published = list(published or [])
        self.unsent = list(unsent or [])


class ConfigError(Exception):
    """Raised at startup when the environment does not describe a usable setup."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))
