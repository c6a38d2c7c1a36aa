"""
Tests for alarm configuration and device views
"""
from adherence_sync.clients.registry import RegistryError, RegistryOk
from adherence_sync.services.alarms import set_alarms
from adherence_sync.services.devices import get_device_details, list_assigned_devices, merge_latest_episodes

IMEI = "860000000000001"


def test_alarm_with_days_mask(registry):
    registry.set_alarm.return_value = RegistryOk(records={})

    result = set_alarms(registry, IMEI, alarm="08:00", alarm_status=1, days="1010101")

    assert result.status_code == 201
    assert result.body == {"message": "Alarm set successfully"}
    registry.set_alarm.assert_called_once_with(IMEI, 1, "08:00", 85)
    registry.set_refill_alarm.assert_not_called()


def test_alarm_defaults_to_every_day(registry):
    registry.set_alarm.return_value = RegistryOk(records={})
    set_alarms(registry, IMEI, alarm="20:30")
    registry.set_alarm.assert_called_once_with(IMEI, 1, "20:30", 127)


def test_invalid_days_rejected_before_any_call(registry):
    result = set_alarms(registry, IMEI, alarm="08:00", days="10a0101")

    assert result.status_code == 400
    registry.set_alarm.assert_not_called()


def test_no_alarm_specified(registry):
    result = set_alarms(registry, IMEI)
    assert result.status_code == 409
    assert result.body["message"] == "No alarm was specified"


def test_refill_alarm_failure_is_a_conflict(registry):
    registry.set_refill_alarm.return_value = RegistryError(code=110, message="Invalid date")

    result = set_alarms(registry, IMEI, refill_alarm="2024-04-01 08:00:00", refill_alarm_status=1)

    assert result.status_code == 409
    assert result.body["message"] == f"Refill alarm for {IMEI} could not be set. Invalid date"
    registry.set_alarm.assert_not_called()


def test_device_details_are_decoded(registry):
    registry.get_device.return_value = RegistryOk(records=[{
        "device_imei": IMEI, "alarm_days": 85, "alarm_time": "08:00", "alarm": 1,
        "last_battery_level": "85", "device_status": "1", "total_device_dose_days": "12",
    }])

    result = get_device_details(registry, IMEI)

    assert result.status_code == 200
    assert result.body["alarmDays"] == "1010101"
    assert result.body["alarmStatus"] == 1
    assert result.body["batteryLevel"] == 0.85
    assert result.body["deviceOpenings"] == 12
    assert result.body["deviceStatus"] == "Device Linked to Episode"


def test_device_details_registry_refusal(registry):
    registry.get_device.return_value = RegistryError(code=101, message="No device found")
    result = get_device_details(registry, IMEI)
    assert result.status_code == 409
    assert result.body == {"message": "No device found", "code": 101}


def test_latest_episode_overlays_device():
    devices = [{"device_imei": "A", "device_status": 1}, {"device_imei": "B", "device_status": 2}]
    episodes = [
        {"device_imei": "A", "last_seen": "2024-01-05 10:00:00", "total_device_days": 3, "last_battery_level": 40},
        {"device_imei": "A", "last_seen": "2024-02-01 10:00:00", "total_device_days": 5, "last_battery_level": 90},
    ]
    merged = merge_latest_episodes(devices, episodes)

    assert merged[0]["last_seen"] == "2024-02-01 10:00:00"
    assert merged[0]["last_battery_level"] == 90
    assert merged[0]["total_device_days"] == 8
    assert merged[1] == {"device_imei": "B", "device_status": 2}


def test_list_assigned_devices(registry, tracker):
    tracker.get_datastore_settings.return_value = {"deviceEmeiList": [{"code": "A", "inUse": True}]}
    registry.get_device_details.return_value = RegistryOk(records=[{"device_imei": "A", "device_status": 1}])
    registry.get_episodes.return_value = RegistryOk(records=[
        {"device_imei": "A", "last_seen": "2024-02-01 10:00:00", "total_device_days": 5, "last_battery_level": 90},
    ])

    result = list_assigned_devices(registry, tracker)

    assert result.status_code == 200
    assert result.body["devices"] == [{
        "imei": "A",
        "lastHeartBeat": "2024-02-01 10:00:00",
        "batteryLevel": 0.9,
        "lastOpened": "",
        "daysDeviceInUse": 5,
        "deviceStatus": "Device Linked to Episode",
    }]
