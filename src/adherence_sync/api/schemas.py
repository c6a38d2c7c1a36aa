"""Request bodies accepted by the integration API."""

from typing import Optional

from pydantic import BaseModel, Field


class AssignDeviceRequest(BaseModel):
    imei: str = Field(..., min_length=1, description="Device IMEI")
    patientId: str = Field(..., min_length=1, description="Unique patient identifier in the tracker")
    force: bool = Field(False, description="Unassign the device from its current client first")


class AlarmRequest(BaseModel):
    imei: str = Field(..., min_length=1, description="Device IMEI")
    alarm: Optional[str] = Field(None, description="Dosing alarm time, hh:mm")
    alarmStatus: Optional[int] = Field(None, description="1 activates the alarm, 0 deactivates it")
    refillAlarm: Optional[str] = Field(None, description="Refill alarm, YYYY-MM-DD hh:mm:ss")
    refillAlarmStatus: Optional[int] = Field(None, description="1 activates the refill alarm, 0 deactivates it")
    days: Optional[str] = Field(
        None,
        pattern=r"^[01]{7}$",
        description="Days of the week as SMTWTFS bits, e.g. 1111111",
    )
