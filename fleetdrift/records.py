"""
Typed records for the telemetry boundary.

The telemetry API returns loosely shaped JSON objects. Each record type here
parses one of them, turning missing or null fields into documented defaults
so the aggregation code never has to guess.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _entity_id(value) -> str:
    # References arrive as {"id": "b12"} or as bare ids
    if isinstance(value, dict):
        value = value.get("id")
    return "" if value is None else str(value)


def _parse_timestamp(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class TelemetryRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def from_api(cls, payload: Optional[Dict[str, Any]]):
        return cls.model_validate(payload or {})


class User(TelemetryRecord):
    id: str
    name: str = ""
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    is_driver: bool = Field(False, alias="isDriver")

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, value):
        return _entity_id(value) or None

    @field_validator("name", "first_name", "last_name", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class Trip(TelemetryRecord):
    device_id: str = Field("", alias="device")
    start: Optional[datetime] = None
    stop: Optional[datetime] = None
    distance: float = 0.0
    driving_duration: str = Field("", alias="drivingDuration")

    @field_validator("device_id", mode="before")
    @classmethod
    def _device(cls, value):
        return _entity_id(value)

    @field_validator("start", "stop", mode="before")
    @classmethod
    def _times(cls, value):
        return _parse_timestamp(value)

    @field_validator("distance", mode="before")
    @classmethod
    def _distance(cls, value):
        return 0.0 if value is None else value

    @field_validator("driving_duration", mode="before")
    @classmethod
    def _duration(cls, value):
        return "" if value is None else str(value)


class ExceptionEvent(TelemetryRecord):
    rule_id: str = ""
    rule_name: str = ""

    @classmethod
    def from_api(cls, payload: Optional[Dict[str, Any]]):
        rule = (payload or {}).get("rule")
        if isinstance(rule, dict):
            return cls(rule_id=_entity_id(rule), rule_name=rule.get("name") or "")
        return cls(rule_id=_entity_id(rule))


class Device(TelemetryRecord):
    id: str
    name: str = ""
    serial_number: str = Field("", alias="serialNumber")
    vin: str = Field("", alias="vehicleIdentificationNumber")
    license_plate: str = Field("", alias="licensePlate")

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, value):
        return _entity_id(value) or None

    @field_validator("name", "serial_number", "vin", "license_plate", mode="before")
    @classmethod
    def _text(cls, value):
        return "" if value is None else str(value)

    @property
    def display_name(self) -> str:
        return self.name or f"Vehicle {self.serial_number or 'Unknown'}"


class VehicleInfo(BaseModel):
    """Vehicle fields stamped onto a daily metric; empty when unknown."""
    vehicle_id: str = ""
    vehicle_name: str = ""
    vehicle_vin: str = ""
    vehicle_license_plate: str = ""

    @classmethod
    def from_device(cls, device: Device) -> "VehicleInfo":
        return cls(
            vehicle_id=device.id,
            vehicle_name=device.display_name,
            vehicle_vin=device.vin,
            vehicle_license_plate=device.license_plate,
        )
