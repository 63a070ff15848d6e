"""Command surface mapping request payloads onto scheduler calls.

Each command takes the JSON body a web layer would receive and returns the
JSON-ready response: ``{"status": "success"}`` for submissions and control
commands, the status snapshot for ``status``, or ``{"error": message}``.
"""

import json
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import ImportCtlError, InvalidRequest
from .scheduler import MIN_WATER_YEAR, ImportScheduler

logger = logging.getLogger(__name__)

INPUT_DATE_FORMAT = "%Y-%m-%d"

Payload = Union[None, str, Dict[str, Any], List[Any]]


def _parse_input_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.strptime(text, INPUT_DATE_FORMAT).date()
    except ValueError:
        raise ValueError(f"Invalid input date '{text}'. Expected format 'yyyy-MM-dd'.") from None


def _positive_or_none(value: Optional[int]) -> Optional[int]:
    if value is None or value <= 0:
        return None
    return value


class _CommandPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DailyPayload(_CommandPayload):
    startdate: Optional[date] = None
    enddate: Optional[date] = None
    days: Optional[int] = None

    @field_validator("startdate", "enddate", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[date]:
        return _parse_input_date(value)

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: Optional[int]) -> Optional[int]:
        return _positive_or_none(value)


class MonthlyPayload(_CommandPayload):
    startdate: Optional[date] = None
    enddate: Optional[date] = None
    months: Optional[int] = None

    @field_validator("startdate", "enddate", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[date]:
        return _parse_input_date(value)

    @field_validator("months")
    @classmethod
    def _check_months(cls, value: Optional[int]) -> Optional[int]:
        return _positive_or_none(value)


class ForecastPayload(_CommandPayload):
    endwy: Optional[int] = None
    numyrs: Optional[int] = None

    @field_validator("numyrs")
    @classmethod
    def _check_numyrs(cls, value: Optional[int]) -> Optional[int]:
        return _positive_or_none(value)

    @field_validator("endwy")
    @classmethod
    def _check_endwy(cls, value: Optional[int]) -> Optional[int]:
        if value is None or value < MIN_WATER_YEAR:
            return None
        return value


def _sensor_ids(payload: Payload) -> List[int]:
    """Positive integer ids from a JSON array; anything else is skipped."""
    if not isinstance(payload, list):
        raise InvalidRequest("Expected a list of sensor ids.")
    sensor_ids = []
    for item in payload:
        if isinstance(item, bool):
            continue
        try:
            sensor_id = int(item)
        except (TypeError, ValueError):
            continue
        if sensor_id > 0:
            sensor_ids.append(sensor_id)
    return sensor_ids


def _as_dict(payload: Payload) -> Dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidRequest("Expected a JSON object.")
    return payload


def _daily(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    request = DailyPayload(**_as_dict(payload))
    if request.startdate is not None:
        job_id = scheduler.submit_daily_range(request.startdate, request.enddate)
    else:
        job_id = scheduler.submit_daily_days(request.enddate, request.days)
    return {"status": "success", "requestIds": [job_id]}


def _monthly(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    request = MonthlyPayload(**_as_dict(payload))
    if request.startdate is not None:
        job_id = scheduler.submit_monthly_range(request.startdate, request.enddate)
    else:
        job_id = scheduler.submit_monthly_months(request.enddate, request.months)
    return {"status": "success", "requestIds": [job_id]}


def _forecast(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    request = ForecastPayload(**_as_dict(payload))
    job_id = scheduler.submit_seasonal_forecast_range(request.endwy, request.numyrs)
    return {"status": "success", "requestIds": [job_id]}


def _period_of_record(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    sensor_ids = _sensor_ids(payload)
    if not sensor_ids:
        raise InvalidRequest("No valid sensor ids in the request.")
    return {"status": "success", "requestIds": scheduler.submit_periods_of_record(sensor_ids)}


def _stations(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    return {"status": "success", "requestIds": [scheduler.submit_station_sensor_snapshot()]}


def _reset(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    scheduler.reset_history()
    return {"status": "success"}


def _cancel(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    scheduler.cancel_all()
    return {"status": "success"}


def _status(scheduler: ImportScheduler, payload: Payload) -> Dict[str, Any]:
    return scheduler.get_status_snapshot().to_wire()


COMMANDS: Dict[str, Callable[[ImportScheduler, Payload], Dict[str, Any]]] = {
    "daily": _daily,
    "monthly": _monthly,
    "forecast": _forecast,
    "b120": _forecast,
    "por": _period_of_record,
    "stations": _stations,
    "reset": _reset,
    "cancel": _cancel,
    "status": _status,
}


def _validation_message(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        cause = (error.get("ctx") or {}).get("error")
        if cause is not None:
            messages.append(str(cause))
        else:
            field = ".".join(str(part) for part in error.get("loc", ())) or "request"
            messages.append(f"{field}: {error['msg']}")
    return "; ".join(messages)


def handle_command(scheduler: ImportScheduler, command: str, payload: Payload = None) -> Dict[str, Any]:
    """Run one command against the scheduler.

    Raises InvalidRequest for an unknown command; every other problem is
    reported in the returned ``error`` field.
    """
    handler = COMMANDS.get(command.strip().lower())
    if handler is None:
        raise InvalidRequest(f"Unknown command '{command}'.")
    try:
        if isinstance(payload, str):
            payload = json.loads(payload) if payload.strip() else None
        return handler(scheduler, payload)
    except json.JSONDecodeError as e:
        message = f"Invalid JSON: {e}"
    except ValidationError as e:
        message = _validation_message(e)
    except ImportCtlError as e:
        message = str(e)
    logger.warning("Command %s failed: %s", command, message)
    return {"error": message}
