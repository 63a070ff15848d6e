"""importctl - serialized import job scheduler."""

from .engine import FetchEngine, RunResult, ThreadedFetchEngine
from .errors import DispatchFailure, InvalidRequest, JobStateError, RunFailure
from .models import JobKind, JobStatus, StatusSnapshot
from .scheduler import ImportScheduler

__version__ = "1.0.0"
__all__ = [
    "DispatchFailure",
    "FetchEngine",
    "ImportScheduler",
    "InvalidRequest",
    "JobKind",
    "JobStateError",
    "JobStatus",
    "RunFailure",
    "RunResult",
    "StatusSnapshot",
    "ThreadedFetchEngine",
    "__version__",
]
