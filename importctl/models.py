"""Data models for import jobs and status snapshots."""

import json
import uuid
from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, NamedTuple, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    TypeAdapter,
    field_serializer,
    field_validator,
    model_validator,
)

from .errors import JobStateError

UNKNOWN_ERROR = "Unknown error."
WIRE_DATE_FORMAT = "%m/%d/%Y"


class SensorInfo(NamedTuple):
    sensor_no: int
    duration: str  # D = daily, M = monthly, E = event
    description: str


class SensorType(str, Enum):
    """Sensor tags a time-series import can select."""
    DAILY_PRECIP = "DPCP"
    MONTHLY_PRECIP = "MPCP"
    DAILY_SNOW = "DSNO"
    MONTHLY_SNOW = "MSNO"
    MONTHLY_FNF = "MFNF"
    LAKE_LEVEL = "MLL"
    MONTHLY_RES_STORAGE = "MRSTO"
    DAILY_FNF = "DFNF"
    DAILY_RES_IN = "DRESIN"
    DAILY_RES_OUT = "DRESOUT"
    DAILY_TOC = "DTOC"
    DAILY_RES_STORAGE = "DRSTO"
    DAILY_PCP_ADJ = "DPCPADJ"
    MONTHLY_PCP_ADJ = "MPCPADJ"
    AJ10 = "AJ-10"
    AJ50 = "AJ-50"
    AJ90 = "AJ-90"
    WY10 = "WY-10"
    WY50 = "WY-50"
    WY90 = "WY-90"

    @property
    def sensor_no(self) -> int:
        return _SENSOR_INFO[self].sensor_no

    @property
    def duration(self) -> str:
        return _SENSOR_INFO[self].duration

    @property
    def description(self) -> str:
        return _SENSOR_INFO[self].description


_SENSOR_INFO: Dict[SensorType, SensorInfo] = {
    SensorType.DAILY_PRECIP: SensorInfo(45, "D", "Incremental Daily Precipitation"),
    SensorType.MONTHLY_PRECIP: SensorInfo(2, "M", "Accumulated Monthly Precipitation"),
    SensorType.DAILY_SNOW: SensorInfo(82, "D", "Daily Snow Water Content"),
    SensorType.MONTHLY_SNOW: SensorInfo(3, "M", "Observed Snow Water Content"),
    SensorType.MONTHLY_FNF: SensorInfo(65, "M", "Monthly Full Natural Flow"),
    SensorType.LAKE_LEVEL: SensorInfo(42, "M", "Monthly Lake level"),
    SensorType.MONTHLY_RES_STORAGE: SensorInfo(15, "M", "Reservoir Storage"),
    SensorType.DAILY_FNF: SensorInfo(8, "D", "Daily Full Natural Flow"),
    SensorType.DAILY_RES_IN: SensorInfo(76, "D", "Daily Reservoir Inflow"),
    SensorType.DAILY_RES_OUT: SensorInfo(23, "D", "Daily Reservoir Releases"),
    SensorType.DAILY_TOC: SensorInfo(94, "D", "Daily Reservoir TOC"),
    SensorType.DAILY_RES_STORAGE: SensorInfo(15, "D", "Daily Reservoir Storage"),
    SensorType.DAILY_PCP_ADJ: SensorInfo(80, "D", "Incremental Adjusted Daily Precipitation"),
    SensorType.MONTHLY_PCP_ADJ: SensorInfo(50, "M", "Accumulated Adjusted Monthly Precipitation"),
    SensorType.AJ10: SensorInfo(260, "E", "A-J 10% Forecast Exceedence"),
    SensorType.AJ50: SensorInfo(261, "E", "A-J 50% Forecast Exceedence"),
    SensorType.AJ90: SensorInfo(262, "E", "A-J 90% Forecast Exceedence"),
    SensorType.WY10: SensorInfo(263, "E", "WY 10% Forecast Exceedence"),
    SensorType.WY50: SensorInfo(264, "E", "WY 50% Forecast Exceedence"),
    SensorType.WY90: SensorInfo(265, "E", "WY 90% Forecast Exceedence"),
}

DAILY_SENSORS: Tuple[SensorType, ...] = (
    SensorType.DAILY_PRECIP,
    SensorType.DAILY_PCP_ADJ,
    SensorType.DAILY_SNOW,
    SensorType.DAILY_FNF,
    SensorType.DAILY_RES_IN,
    SensorType.DAILY_RES_OUT,
    SensorType.DAILY_TOC,
    SensorType.DAILY_RES_STORAGE,
)

MONTHLY_SENSORS: Tuple[SensorType, ...] = (
    SensorType.MONTHLY_PRECIP,
    SensorType.MONTHLY_PCP_ADJ,
    SensorType.MONTHLY_SNOW,
    SensorType.MONTHLY_RES_STORAGE,
    SensorType.MONTHLY_FNF,
    SensorType.LAKE_LEVEL,
)

FORECAST_SENSORS: Tuple[SensorType, ...] = (
    SensorType.AJ10,
    SensorType.AJ50,
    SensorType.AJ90,
    SensorType.WY10,
    SensorType.WY50,
    SensorType.WY90,
)


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "Pending"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class JobKind(str, Enum):
    """Kinds of import job, one fetch engine operation each."""
    TIME_SERIES_RANGE = "TimeSeriesRange"
    STATION_SENSOR_SNAPSHOT = "StationSensorSnapshot"
    PERIOD_OF_RECORD = "PeriodOfRecord"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def new_job_id() -> str:
    return uuid.uuid4().hex


class JobView(BaseModel):
    """Read-only copy of a job as reported in a status snapshot."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    request_id: str = Field(alias="requestId")
    request_type: str = Field(alias="requestType")
    kind: JobKind = Field(exclude=True)
    status: JobStatus
    perc_completed: Optional[int] = Field(default=None, alias="percCompleted")
    error: Optional[str] = None
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    sensor_id: Optional[int] = Field(default=None, alias="sensorId")

    @field_serializer("start_date", "end_date")
    def _format_date(self, value: Optional[date]) -> Optional[str]:
        return value.strftime(WIRE_DATE_FORMAT) if value is not None else None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ImportJob(BaseModel):
    """State shared by every import job kind.

    Parameters are frozen once constructed; only ``status``,
    ``perc_completed`` and ``error_message`` change, and only through the
    transition methods below.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_job_id, frozen=True)
    request_type: str = Field(frozen=True)
    status: JobStatus = JobStatus.PENDING
    perc_completed: Optional[int] = None
    error_message: Optional[str] = None

    @field_validator("request_type")
    @classmethod
    def _check_request_type(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("request_type must not be blank")
        return value

    @property
    def is_pending(self) -> bool:
        return self.status == JobStatus.PENDING

    @property
    def is_executing(self) -> bool:
        return self.status == JobStatus.EXECUTING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def percent_complete(self) -> int:
        """0 while pending or failed, 100 once completed."""
        if self.is_executing:
            return self.perc_completed or 0
        if self.status == JobStatus.COMPLETED:
            return 100
        return 0

    def start_execution(self) -> None:
        if not self.is_pending:
            raise JobStateError(f"Job {self.id} cannot start from {self.status.value}")
        self.status = JobStatus.EXECUTING
        self.perc_completed = 0

    def set_progress(self, percent: int) -> None:
        """Record progress; ignored unless the job is executing."""
        if not self.is_executing:
            return
        percent = max(0, min(100, int(percent)))
        if self.perc_completed is None or percent > self.perc_completed:
            self.perc_completed = percent

    def complete_execution(self) -> None:
        if not self.is_executing:
            raise JobStateError(f"Job {self.id} cannot complete from {self.status.value}")
        self.status = JobStatus.COMPLETED
        self.perc_completed = 100

    def fail(self, message: Optional[str] = None) -> None:
        if not self.is_executing:
            raise JobStateError(f"Job {self.id} cannot fail from {self.status.value}")
        message = (message or "").strip()
        self.error_message = message or UNKNOWN_ERROR
        self.status = JobStatus.FAILED
        self.perc_completed = None

    def to_view(self) -> JobView:
        show_progress = self.status in (JobStatus.EXECUTING, JobStatus.COMPLETED)
        return JobView(
            request_id=self.id,
            request_type=self.request_type,
            kind=self.kind,
            status=self.status,
            perc_completed=self.percent_complete if show_progress else None,
            error=self.error_message if self.status == JobStatus.FAILED else None,
            **self._view_parameters(),
        )

    def _view_parameters(self) -> Dict[str, Any]:
        return {}

    def __str__(self) -> str:
        text = f"{type(self).__name__}[id={self.id}; type={self.request_type}; status={self.status.value}"
        if self.status == JobStatus.EXECUTING:
            text += f"; {self.percent_complete}%"
        return text + "]"


class TimeSeriesRangeJob(ImportJob):
    """Import of sensor time series between two inclusive dates."""

    kind: Literal[JobKind.TIME_SERIES_RANGE] = Field(default=JobKind.TIME_SERIES_RANGE, frozen=True)
    request_type: str = Field(default="Import TimeSeriesData", frozen=True)
    start_date: date = Field(frozen=True)
    end_date: date = Field(frozen=True)
    sensor_types: Tuple[SensorType, ...] = Field(frozen=True, min_length=1)

    @field_validator("sensor_types")
    @classmethod
    def _dedupe_sensor_types(cls, value: Tuple[SensorType, ...]) -> Tuple[SensorType, ...]:
        return tuple(dict.fromkeys(value))

    @model_validator(mode="after")
    def _check_range(self) -> "TimeSeriesRangeJob":
        if self.start_date >= self.end_date:
            raise ValueError(
                f"start_date {self.start_date.isoformat()} must be before "
                f"end_date {self.end_date.isoformat()}"
            )
        return self

    def _view_parameters(self) -> Dict[str, Any]:
        return {"start_date": self.start_date, "end_date": self.end_date}


class StationSensorSnapshotJob(ImportJob):
    """Import of the station and sensor catalogue."""

    kind: Literal[JobKind.STATION_SENSOR_SNAPSHOT] = Field(
        default=JobKind.STATION_SENSOR_SNAPSHOT, frozen=True
    )
    request_type: str = Field(default="Import StationSensorData", frozen=True)


class PeriodOfRecordJob(ImportJob):
    """Import of the full record of one sensor."""

    kind: Literal[JobKind.PERIOD_OF_RECORD] = Field(default=JobKind.PERIOD_OF_RECORD, frozen=True)
    request_type: str = Field(default="Import PeriodOfRecord", frozen=True)
    sensor_id: PositiveInt = Field(frozen=True)

    def _view_parameters(self) -> Dict[str, Any]:
        return {"sensor_id": self.sensor_id}


AnyJob = Annotated[
    Union[TimeSeriesRangeJob, StationSensorSnapshotJob, PeriodOfRecordJob],
    Field(discriminator="kind"),
]

_JOB_ADAPTER: TypeAdapter = TypeAdapter(AnyJob)


def parse_job(data: Dict[str, Any]) -> ImportJob:
    """Build a job of the right kind from a plain dict."""
    if "kind" in data:
        data = {**data, "kind": JobKind(data["kind"])}
    return _JOB_ADAPTER.validate_python(data)


class StatusSnapshot(BaseModel):
    """Pending, executing and finished jobs at one instant."""

    model_config = ConfigDict(frozen=True)

    requests: List[JobView] = Field(default_factory=list)
    executing: Optional[JobView] = None
    history: List[JobView] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        """Wire payload; empty sections are omitted."""
        wire: Dict[str, Any] = {}
        if self.requests:
            wire["requests"] = [view.to_wire() for view in self.requests]
        if self.executing is not None:
            wire["executing"] = self.executing.to_wire()
        if self.history:
            wire["history"] = [view.to_wire() for view in self.history]
        return wire

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_wire(), indent=indent)
