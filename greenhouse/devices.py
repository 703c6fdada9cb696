"""
Device presentation rules

A device that stopped reporting keeps status 'online' in storage until
something writes to it. Readers see it as 'offline' once last_seen is older
than the staleness window; the stored row is never touched by a read.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .models import Device, DeviceStatus
from .utils import ensure_utc, utcnow

DEFAULT_OFFLINE_AFTER = timedelta(minutes=5)


def is_stale(
    device: Device,
    now: Optional[datetime] = None,
    offline_after: timedelta = DEFAULT_OFFLINE_AFTER
) -> bool:
    """True when an online device has not been seen within the window"""
    if device.status != DeviceStatus.ONLINE.value or device.last_seen is None:
        return False
    now = now or utcnow()
    return ensure_utc(device.last_seen) < now - offline_after


def present_device(
    device: Device,
    now: Optional[datetime] = None,
    offline_after: timedelta = DEFAULT_OFFLINE_AFTER
) -> Device:
    """Copy of the device with the display status applied"""
    if is_stale(device, now, offline_after):
        return device.model_copy(update={"status": DeviceStatus.OFFLINE.value})
    return device


def present_devices(
    devices: Iterable[Device],
    now: Optional[datetime] = None,
    offline_after: timedelta = DEFAULT_OFFLINE_AFTER
) -> List[Device]:
    now = now or utcnow()
    return [present_device(d, now, offline_after) for d in devices]
