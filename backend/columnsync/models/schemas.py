"""
Wire models for the sensor / worker / audit REST collaborator.

The collaborator speaks its own field names (``ble_id``, ``pillar_id``,
``line``, camelCase worker fields); these models map them onto the names
used throughout the engine.
"""
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class SensorRecord(BaseModel):
    """One mounted sensor: which column it sits on and which face (edge)."""
    sensor_id: str = Field(alias="ble_id")
    column_id: int = Field(alias="pillar_id")
    edge_index: int = Field(alias="line")

    model_config = {"populate_by_name": True}

    @field_validator("sensor_id", mode="before")
    @classmethod
    def _sensor_id_as_text(cls, v):
        return str(v).strip()


class WorkerInfo(BaseModel):
    building: str = Field(alias="bldg_id")
    name: Optional[str] = None
    driver: Optional[str] = None
    driver_id: Optional[str] = Field(default=None, alias="driverId")
    driver_phone: Optional[str] = Field(default=None, alias="driverPhone")
    manager: Optional[str] = None
    manager_id: Optional[str] = Field(default=None, alias="managerId")
    manager_phone: Optional[str] = Field(default=None, alias="managerPhone")

    model_config = {"populate_by_name": True}

    @field_validator("building", mode="before")
    @classmethod
    def _building_as_text(cls, v):
        return str(v)


class CheckLogEntry(BaseModel):
    """Append-only audit record written when a reported problem is signed off."""
    date: str                 # when the problem was raised (Asia/Seoul, YYYY.MM.DD.HH.MM.SS)
    manager_id: str = ""
    worker_id: str = ""
    bldg_id: str = ""
    ble_id: str = ""
    check_content: str
    check_time: str           # when the cause was submitted
