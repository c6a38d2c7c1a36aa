"""
Dosing and refill alarm configuration on a device.
"""
from __future__ import annotations
import logging
from adherence_sync.clients.registry import DeviceRegistryClient
from adherence_sync.services.results import ServiceResult
from adherence_sync.transforms.adherence_codec import ALL_DAYS, INVALID_DAYS_MASK, days_mask_to_bits

log = logging.getLogger(__name__)

def _alarm_status(value) -> int | None:
    """0 (off) or 1 (on); anything else means the status was not given."""
    try:
        status = int(value)
    except (TypeError, ValueError):
        return None
    return status if status in (0, 1) else None

def set_alarms(
    registry: DeviceRegistryClient,
    imei: str,
    alarm: str | None = None,
    alarm_status=None,
    refill_alarm: str | None = None,
    refill_alarm_status=None,
    days: str | None = None,
) -> ServiceResult:
    status = _alarm_status(alarm_status)
    refill_status = _alarm_status(refill_alarm_status)

    if not alarm and status is None and not refill_alarm and refill_status is None:
        return ServiceResult(409, {"status": 409, "message": "No alarm was specified"})

    if alarm or status is not None:
        alarm_days = ALL_DAYS
        if days:
            alarm_days = days_mask_to_bits(days)
            if alarm_days == INVALID_DAYS_MASK:
                return ServiceResult(400, {"status": 400, "message": f"Invalid alarm days '{days}'. Use 7 characters of 0 or 1, e.g. 1111111"})
        result = registry.set_alarm(imei, 1 if status is None else status, alarm, alarm_days)
        if not result.ok:
            return ServiceResult(409, {"status": 409, "message": f"Alarm for {imei} could not be set. {result.message}"})
        log.info("Alarm set for device %s (days=%s)", imei, alarm_days)

    if refill_alarm or refill_status is not None:
        result = registry.set_refill_alarm(imei, 1 if refill_status is None else refill_status, refill_alarm)
        if not result.ok:
            return ServiceResult(409, {"status": 409, "message": f"Refill alarm for {imei} could not be set. {result.message}"})
        log.info("Refill alarm set for device %s", imei)

    return ServiceResult(201, {"message": "Alarm set successfully"})
