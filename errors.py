"""Error taxonomy for the audit engine."""


class AuditError(Exception):
    """Base class for everything the audit engine raises."""


class InvalidInput(AuditError):
    """The request was rejected before any work began (e.g. unknown site)."""


class UpstreamUnavailable(AuditError):
    """The crawl provider could not be reached or returned an error."""


class TaskNotReady(UpstreamUnavailable):
    """The provider accepted the crawl task but has not finished it yet."""


class MalformedMetadata(AuditError):
    """A single metadata field could not be parsed."""

    def __init__(self, field, value):
        super().__init__(f"Malformed value for {field}: {value!r}")
        self.field = field
        self.value = value


class AuditCancelled(AuditError):
    """The caller cancelled the run or its deadline expired."""


class PersistenceError(AuditError):
    """A batch write failed and was rolled back.

    ``attempted`` is the number of records sent before the failure and
    ``failed_index`` the zero-based position of the failing record in the
    batch (``None`` when the failure was not tied to a record, e.g. commit).
    """

    def __init__(self, message, attempted=0, failed_index=None, record=None):
        super().__init__(message)
        self.attempted = attempted
        self.failed_index = failed_index
        self.record = record


class PersistenceConflict(PersistenceError):
    """A record violated a database constraint."""
