"""Error types raised by importctl."""


class ImportCtlError(Exception):
    """Base class for importctl errors."""


class InvalidRequest(ImportCtlError, ValueError):
    """Submission parameters are malformed; no job was created."""


class DispatchFailure(ImportCtlError):
    """The fetch engine rejected a job synchronously."""


class RunFailure(ImportCtlError):
    """A fetch task failed for good and should not be retried."""


class JobStateError(ImportCtlError, RuntimeError):
    """A job transition was attempted from an illegal state."""


class TransientFetchError(ImportCtlError):
    """A fetch attempt hit a connection problem and may be retried."""
