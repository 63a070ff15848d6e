"""Fetch engine contract and a thread-pool implementation of it."""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Sequence

from .errors import DispatchFailure, RunFailure, TransientFetchError
from .models import SensorType

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (TransientFetchError, ConnectionError, TimeoutError)


@dataclass(frozen=True)
class RunResult:
    """Outcome of one fetch engine run."""
    success: bool
    message: Optional[str] = None


class Signal:
    """Thread-safe list of callbacks fired together."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Callable] = []
        self._lock = threading.Lock()

    def connect(self, handler: Callable) -> None:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def disconnect(self, handler: Callable) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def emit(self, *args) -> None:
        """Call every handler; a failing handler does not stop the others."""
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception("Signal %s handler %r failed", self.name, handler)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)


class FetchEngine(ABC):
    """Single-flight component that performs the remote fetches for a job.

    Run methods either raise :class:`DispatchFailure` straight away or start
    the run in the background and return. ``last_result`` returns the same
    :class:`RunResult` object that ``run_finished`` carries for that run.
    Implementations must not hold their own locks while emitting either signal.
    """

    def __init__(self):
        self.progress_changed = Signal("progress_changed")
        self.run_finished = Signal("run_finished")

    @abstractmethod
    def is_busy(self) -> bool:
        ...

    @abstractmethod
    def progress(self) -> Optional[float]:
        """Fraction of the current run done, in [0, 1], or None if unknown."""

    @abstractmethod
    def import_time_series(self, start_date: date, end_date: date,
                           sensor_types: Sequence[SensorType]) -> None:
        ...

    @abstractmethod
    def import_station_sensors(self) -> None:
        ...

    @abstractmethod
    def import_period_of_record(self, sensor_id: int) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        """Ask the current run to stop; it still finishes through run_finished."""

    def last_result(self) -> Optional[RunResult]:
        return None


@dataclass(frozen=True)
class FetchTask:
    """One remote fetch making up part of a run."""
    name: str
    sensor_type: Optional[SensorType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sensor_id: Optional[int] = None


@dataclass
class _Run:
    tasks: List[FetchTask]
    done: int = 0
    errors: List[str] = field(default_factory=list)
    stopped: bool = False

    @property
    def finished(self) -> bool:
        return self.done >= len(self.tasks)


STATION_SNAPSHOT_TASKS = ("stations", "sensors", "sensor_definitions")


class ThreadedFetchEngine(FetchEngine):
    """Runs the fetch tasks of one job at a time on a thread pool.

    ``fetch`` performs the network I/O for a single task. Raising one of
    ``RETRYABLE_ERRORS`` retries the task up to ``max_connect_tries``
    attempts in total; any other exception, :class:`RunFailure` included,
    fails the task without a retry.
    """

    def __init__(self, fetch: Callable[[FetchTask], None], max_threads: int = 5,
                 max_connect_tries: int = 5):
        super().__init__()
        if max_threads < 1:
            raise ValueError("max_threads must be at least 1")
        if max_connect_tries < 1:
            raise ValueError("max_connect_tries must be at least 1")
        self.fetch = fetch
        self.max_threads = max_threads
        self.max_connect_tries = max_connect_tries
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_threads,
                                            thread_name_prefix="importctl-fetch")
        self._run: Optional[_Run] = None
        self._last_result: Optional[RunResult] = None

    def is_busy(self) -> bool:
        with self._lock:
            return self._run is not None

    def progress(self) -> Optional[float]:
        with self._lock:
            if self._run is None:
                return None
            return self._run.done / len(self._run.tasks)

    def last_result(self) -> Optional[RunResult]:
        with self._lock:
            return self._last_result

    def import_time_series(self, start_date: date, end_date: date,
                           sensor_types: Sequence[SensorType]) -> None:
        if not sensor_types:
            raise DispatchFailure("No sensor types to import.")
        if start_date >= end_date:
            raise DispatchFailure("The import start date must be before its end date.")
        tasks = [
            FetchTask(name=f"Import Sensor[{sensor.value}]", sensor_type=sensor,
                      start_date=start_date, end_date=end_date)
            for sensor in sensor_types
        ]
        self._start(tasks)

    def import_station_sensors(self) -> None:
        self._start([FetchTask(name=f"Import {name}") for name in STATION_SNAPSHOT_TASKS])

    def import_period_of_record(self, sensor_id: int) -> None:
        if sensor_id <= 0:
            raise DispatchFailure(f"Invalid sensor id {sensor_id}.")
        self._start([FetchTask(name=f"Import PeriodOfRecord[{sensor_id}]", sensor_id=sensor_id)])

    def stop(self) -> None:
        with self._lock:
            if self._run is not None:
                self._run.stopped = True
                logger.info("Stop requested for the current fetch run")

    def shutdown(self, wait: bool = True) -> None:
        self.stop()
        self._executor.shutdown(wait=wait)

    def _start(self, tasks: List[FetchTask]) -> None:
        with self._lock:
            if self._run is not None:
                raise DispatchFailure("Cannot launch request because the Data Importer is busy.")
            run = _Run(tasks=tasks)
            self._run = run
            self._last_result = None
        logger.debug("Starting fetch run with %d task(s)", len(tasks))
        try:
            for task in tasks:
                self._executor.submit(self._run_task, run, task)
        except RuntimeError as e:
            with self._lock:
                run.stopped = True
                if self._run is run:
                    self._run = None
            raise DispatchFailure(f"Cannot launch request: {e}") from e

    def _run_task(self, run: _Run, task: FetchTask) -> None:
        error = self._fetch_with_retries(run, task)
        with self._lock:
            run.done += 1
            if error is not None:
                run.errors.append(error)
            finished = run.finished
            result = None
            if finished:
                result = self._finish(run)
        # Signals go out without the lock held.
        if finished:
            self.run_finished.emit(result)
        else:
            self.progress_changed.emit()

    def _fetch_with_retries(self, run: _Run, task: FetchTask) -> Optional[str]:
        for attempt in range(1, self.max_connect_tries + 1):
            if run.stopped:
                return None
            try:
                self.fetch(task)
                return None
            except RETRYABLE_ERRORS as e:
                logger.warning("%s attempt %d/%d failed: %s",
                               task.name, attempt, self.max_connect_tries, e)
            except RunFailure as e:
                logger.warning("%s failed: %s", task.name, e)
                return f"{task.name}: {e}"
            except Exception as e:
                logger.exception("%s failed unexpectedly", task.name)
                return f"{task.name}: {e}"
        return f"{task.name}: retried out after {self.max_connect_tries} attempts"

    def _finish(self, run: _Run) -> RunResult:
        if run.stopped:
            result = RunResult(False, "Import stopped before completion.")
        elif run.errors:
            result = RunResult(
                False,
                f"{len(run.errors)} of {len(run.tasks)} fetch task(s) failed: {run.errors[0]}",
            )
        else:
            result = RunResult(True)
        self._run = None
        self._last_result = result
        return result
