"""Import job scheduling against a single-flight fetch engine."""

import logging
import threading
from collections import deque
from datetime import date, timedelta
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from .config import Settings, get_settings
from .dates import (
    add_months,
    clamp_to_today,
    first_of_month,
    water_year,
    water_year_end,
    water_year_start,
)
from .engine import FetchEngine, RunResult
from .errors import InvalidRequest
from .models import (
    DAILY_SENSORS,
    FORECAST_SENSORS,
    MONTHLY_SENSORS,
    ImportJob,
    JobKind,
    PeriodOfRecordJob,
    SensorType,
    StationSensorSnapshotJob,
    StatusSnapshot,
    TimeSeriesRangeJob,
)

logger = logging.getLogger(__name__)

# Oldest water year a forecast import will accept.
MIN_WATER_YEAR = 1900


def _invalid_request(exc: ValidationError) -> InvalidRequest:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return InvalidRequest("; ".join(messages))


class ImportScheduler:
    """Queues import jobs and hands them to the fetch engine one at a time.

    Pending jobs start in submission order and at most one job is executing.
    Finished jobs are kept newest first in ``history`` until
    :meth:`reset_history`. Every public method and both engine signal
    handlers run under one re-entrant lock.
    """

    def __init__(self, engine: FetchEngine, settings: Optional[Settings] = None,
                 clock: Callable[[], date] = date.today):
        self.engine = engine
        self.settings = settings or get_settings()
        self.clock = clock
        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._pending: Deque[ImportJob] = deque()
        self._in_flight: Optional[ImportJob] = None
        self._history: List[ImportJob] = []
        # Result of the last engine run applied to a job; a second signal for it is a duplicate.
        self._applied_result: Optional[RunResult] = None
        self._launchers: Dict[JobKind, Callable[[ImportJob], None]] = {
            JobKind.TIME_SERIES_RANGE: self._launch_time_series,
            JobKind.STATION_SENSOR_SNAPSHOT: self._launch_station_sensors,
            JobKind.PERIOD_OF_RECORD: self._launch_period_of_record,
        }
        missing = set(JobKind) - set(self._launchers)
        if missing:
            raise TypeError(f"No launcher for job kind(s): {sorted(k.value for k in missing)}")
        engine.progress_changed.connect(self._on_progress_changed)
        engine.run_finished.connect(self._on_run_finished)
        logger.info("Import scheduler started")

    def close(self) -> None:
        """Stop listening to the engine; queued jobs are left as they are."""
        self.engine.progress_changed.disconnect(self._on_progress_changed)
        self.engine.run_finished.disconnect(self._on_run_finished)
        logger.info("Import scheduler closed")

    def __enter__(self) -> "ImportScheduler":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Read access

    @property
    def pending(self) -> List[ImportJob]:
        with self._lock:
            return list(self._pending)

    @property
    def in_flight(self) -> Optional[ImportJob]:
        with self._lock:
            return self._in_flight

    @property
    def history(self) -> List[ImportJob]:
        with self._lock:
            return list(self._history)

    def is_idle(self) -> bool:
        with self._lock:
            return self._in_flight is None and not self._pending

    # Submission

    def submit_time_series_range(self, start_date: date, end_date: date,
                                 sensor_types: Iterable[SensorType],
                                 request_type: str = "Import TimeSeriesData") -> str:
        """Queue a time-series import for ``start_date`` through ``end_date``."""
        sensor_types = tuple(sensor_types)
        job = self._build(TimeSeriesRangeJob, request_type=request_type,
                          start_date=start_date, end_date=end_date,
                          sensor_types=sensor_types)
        return self._submit(job)

    def submit_daily_range(self, start_date: Optional[date] = None,
                           end_date: Optional[date] = None) -> str:
        """Queue a daily import; a missing start date goes back the default day count."""
        end_date = clamp_to_today(end_date, self.clock())
        if start_date is None:
            start_date = end_date - timedelta(days=self.settings.default_import_days)
        return self.submit_time_series_range(start_date, end_date, DAILY_SENSORS,
                                             request_type="Import DailyData")

    def submit_daily_days(self, end_date: Optional[date] = None,
                          num_days: Optional[int] = None) -> str:
        """Queue a daily import of the ``num_days`` days up to ``end_date``."""
        if num_days is None or num_days <= 0:
            num_days = self.settings.default_import_days
        end_date = clamp_to_today(end_date, self.clock())
        start_date = end_date - timedelta(days=num_days)
        return self.submit_time_series_range(start_date, end_date, DAILY_SENSORS,
                                             request_type="Import DailyData")

    def submit_monthly_range(self, start_date: Optional[date] = None,
                             end_date: Optional[date] = None) -> str:
        """Queue a monthly import; both dates snap to the first of their month."""
        end_date = first_of_month(clamp_to_today(end_date, self.clock()))
        if start_date is None:
            start_date = add_months(end_date, -self.settings.default_import_months)
        else:
            start_date = first_of_month(start_date)
        return self.submit_time_series_range(start_date, end_date, MONTHLY_SENSORS,
                                             request_type="Import MonthlyData")

    def submit_monthly_months(self, end_date: Optional[date] = None,
                              num_months: Optional[int] = None) -> str:
        """Queue a monthly import of the ``num_months`` months up to ``end_date``."""
        if num_months is None or num_months <= 0:
            num_months = self.settings.default_import_months
        end_date = first_of_month(clamp_to_today(end_date, self.clock()))
        start_date = add_months(end_date, -num_months)
        return self.submit_time_series_range(start_date, end_date, MONTHLY_SENSORS,
                                             request_type="Import MonthlyData")

    def submit_seasonal_forecast_range(self, end_water_year: Optional[int] = None,
                                       num_years: Optional[int] = None) -> str:
        """Queue a forecast import covering ``num_years`` water years.

        The range runs from Oct 1 starting the first water year through
        Sep 30 of ``end_water_year``. A missing, pre-1900 or future end
        year means the current water year.
        """
        current = water_year(self.clock())
        if end_water_year is None or end_water_year < MIN_WATER_YEAR or end_water_year > current:
            end_water_year = current
        if num_years is None or num_years <= 0:
            num_years = self.settings.default_forecast_years
        start_date = water_year_start(end_water_year - num_years + 1)
        end_date = water_year_end(end_water_year)
        return self.submit_time_series_range(start_date, end_date, FORECAST_SENSORS,
                                             request_type="Import B120Data")

    def submit_station_sensor_snapshot(self) -> str:
        return self._submit(StationSensorSnapshotJob())

    def submit_period_of_record(self, sensor_id: int) -> str:
        job = self._build(PeriodOfRecordJob, sensor_id=sensor_id)
        return self._submit(job)

    def submit_periods_of_record(self, sensor_ids: Sequence[int]) -> List[str]:
        """Queue one period-of-record job per sensor id.

        All ids are validated first, so a bad id queues nothing.
        """
        if not sensor_ids:
            raise InvalidRequest("No sensor ids to import.")
        jobs = [self._build(PeriodOfRecordJob, sensor_id=sensor_id) for sensor_id in sensor_ids]
        with self._lock:
            return [self._submit(job) for job in jobs]

    # Queries and control

    def get_status_snapshot(self) -> StatusSnapshot:
        with self._lock:
            self._refresh_progress()
            return StatusSnapshot(
                requests=[job.to_view() for job in self._pending],
                executing=self._in_flight.to_view() if self._in_flight is not None else None,
                history=[job.to_view() for job in self._history],
            )

    def reset_history(self) -> None:
        with self._lock:
            count = len(self._history)
            self._history.clear()
        logger.info("Cleared %d job(s) from history", count)

    def cancel_all(self) -> None:
        """Drop pending jobs and ask the engine to stop the running one."""
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
            logger.info("Cancelled %d pending job(s)", dropped)
            if self._in_flight is not None or self.engine.is_busy():
                self.engine.stop()
            self._idle.notify_all()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is pending or executing. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(
                lambda: self._in_flight is None and not self._pending, timeout
            )

    # Internals; callers hold self._lock

    def _build(self, job_type, **params) -> ImportJob:
        try:
            return job_type(**params)
        except ValidationError as e:
            raise _invalid_request(e) from e

    def _submit(self, job: ImportJob) -> str:
        with self._lock:
            self._pending.append(job)
            logger.info("Queued %s", job)
            self._dispatch_next()
        return job.id

    def _dispatch_next(self) -> None:
        while self._in_flight is None and self._pending and not self.engine.is_busy():
            job = self._pending.popleft()
            job.start_execution()
            self._in_flight = job
            logger.info("Starting %s", job)
            self._launch(job)
            if job.is_terminal and self._in_flight is job:
                # Rejected synchronously; move on to the next job.
                self._retire(job)

    def _launch(self, job: ImportJob) -> None:
        try:
            self._launchers[job.kind](job)
        except Exception as e:
            logger.warning("Launching %s failed: %s", job, e)
            job.fail(str(e))

    def _launch_time_series(self, job: TimeSeriesRangeJob) -> None:
        self.engine.import_time_series(job.start_date, job.end_date, job.sensor_types)

    def _launch_station_sensors(self, job: StationSensorSnapshotJob) -> None:
        self.engine.import_station_sensors()

    def _launch_period_of_record(self, job: PeriodOfRecordJob) -> None:
        self.engine.import_period_of_record(job.sensor_id)

    def _retire(self, job: ImportJob) -> None:
        if job not in self._history:
            self._history.insert(0, job)
        if self._in_flight is job:
            self._in_flight = None
        logger.info("Finished %s", job)
        self._idle.notify_all()

    def _refresh_progress(self) -> None:
        self._dispatch_next()
        job = self._in_flight
        if job is None or not self.engine.is_busy():
            return
        fraction = self.engine.progress()
        if fraction is not None:
            job.set_progress(round(fraction * 100))

    def _finish_in_flight(self, result: Optional[RunResult]) -> None:
        if result is not None:
            self._applied_result = result
        job = self._in_flight
        if job is not None:
            if result is None or result.success:
                job.complete_execution()
            else:
                job.fail(result.message)
            self._retire(job)
        self._dispatch_next()

    # Engine signal handlers

    def _on_progress_changed(self) -> None:
        with self._lock:
            if self._in_flight is None:
                return
            if not self.engine.is_busy():
                # Racing finish; only act on a result not yet applied to a job.
                result = self.engine.last_result()
                if result is None or result is self._applied_result:
                    return
                logger.debug("Engine idle on progress signal; finishing %s", self._in_flight)
                self._finish_in_flight(result)
                return
            fraction = self.engine.progress()
            if fraction is not None:
                self._in_flight.set_progress(round(fraction * 100))

    def _on_run_finished(self, result: Optional[RunResult] = None) -> None:
        with self._lock:
            if result is not None and result is self._applied_result:
                logger.debug("Ignoring duplicate finish signal")
                return
            self._finish_in_flight(result)
