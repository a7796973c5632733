from __future__ import annotations


class RulesSyncError(Exception):
    """Base class for errors raised by the rules API and the rules syncer."""


class AuthContextMissing(RulesSyncError):
    """Tenant name or tenant id could not be resolved from the request context."""


class RuleNotFound(RulesSyncError):
    """The repository has no rule group with the requested name for the tenant."""


class SerializationError(RulesSyncError):
    """Rule groups could not be parsed from, or rendered to, YAML."""


class BackendError(RulesSyncError):
    """A repository operation failed for a reason opaque to the facade."""


class SyncError(RulesSyncError):
    """Base class for failures of a single sync cycle. Never fatal to the loop."""


class FetchError(SyncError):
    """Rules could not be fetched from the rules backend or the API."""


class FileWriteError(SyncError):
    """The rules file could not be created, written or closed."""


class ReloadError(SyncError):
    """The rule evaluation engine did not accept the reload request."""
