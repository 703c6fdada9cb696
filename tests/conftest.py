"""
Shared fixtures: an in-memory store, a recording notifier and an HTTP client
bound to an app built around them
"""
from typing import Any, Dict, List

import httpx
import pytest

from greenhouse.config import Settings
from greenhouse.exceptions import NotificationError
from greenhouse.main import create_app
from greenhouse.memory_store import InMemoryStore
from greenhouse.models import DeviceCreate, NotificationRequest, Profile, Zone
from greenhouse.notifications import Notifier

USER_ID = "user-123"
ZONE_ID = "zone-a"


class RecordingNotifier(Notifier):
    """Keeps every request instead of emailing it"""

    def __init__(self, fail: bool = False):
        self.sent: List[NotificationRequest] = []
        self.fail = fail
        self.closed = False

    async def send(self, request: NotificationRequest) -> Dict[str, Any]:
        if self.fail:
            raise NotificationError("Email API returned HTTP 422", status_code=422)
        self.sent.append(request)
        return {"id": f"email-{len(self.sent)}"}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def app_settings():
    return Settings(
        storage_backend="memory",
        environment="development",
        resend_api_key=None,
        max_batch_size=50
    )


@pytest.fixture
def store():
    """Store seeded with one user profile and zone"""
    memory_store = InMemoryStore()
    memory_store.add_profile(Profile(
        user_id=USER_ID,
        display_name="Ada",
        email="ada@example.com",
        notification_email="alerts@example.com"
    ))
    memory_store.add_zone(Zone(id=ZONE_ID, user_id=USER_ID, name="Tomatoes"))
    return memory_store


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(app_settings, store, notifier):
    return create_app(app_settings=app_settings, store=store, notifier=notifier)


@pytest.fixture
async def client(app):
    """Async HTTP client talking to the app in-process"""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
async def registered_device(store):
    return await store.create_device(DeviceCreate(
        user_id=USER_ID,
        device_id="esp32-01",
        name="Bench sensor",
        device_type="soil-probe",
        zone_id=ZONE_ID,
        ip_address="10.0.4.17",
        metadata={"mount": "bench-3"}
    ))


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)
