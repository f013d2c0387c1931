"""Tests for the reminder service wiring and the CRM application lifecycle."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import List

import httpx

from config.config import AppConfig, RemindersConfig, StorageConfig
from zncrm.app.crm_app import CrmApp
from zncrm.gateway.supabase_client import SupabaseGateway
from zncrm.models.crm import AppointmentSnapshot
from zncrm.reminders.notification_dispatcher import NotificationPermission
from zncrm.reminders.notified_store import InMemoryNotifiedStore, JsonFileNotifiedStore
from zncrm.reminders.reminder_service import ReminderService, build_notified_store


NOW = datetime(2026, 10, 18, 9, 0)


class FakeSource:
    def __init__(self) -> None:
        self.days: List[str] = []

    async def list_appointments_on(self, day: str) -> List[AppointmentSnapshot]:
        self.days.append(day)
        return [AppointmentSnapshot(id="a1", title="Oil change", date="2026-10-18",
                                    time="09:10", location="Main St 5")]


def test_build_notified_store_follows_backend(tmp_path: Path) -> None:
    assert isinstance(build_notified_store(StorageConfig(backend="memory")), InMemoryNotifiedStore)

    store = build_notified_store(StorageConfig(path=str(tmp_path / "state.json"), notified_key="k"))
    assert isinstance(store, JsonFileNotifiedStore)
    assert store.key == "k"


def test_permission_comes_from_config() -> None:
    service = ReminderService(
        FakeSource(),
        RemindersConfig(permission="denied"),
        storage=StorageConfig(backend="memory"),
    )
    assert service.permission.state == NotificationPermission.DENIED


async def test_disabled_service_does_not_start() -> None:
    source = FakeSource()
    service = ReminderService(source, RemindersConfig(enabled=False), storage=StorageConfig(backend="memory"))

    await service.start()
    await asyncio.sleep(0)

    assert service.is_started is False
    assert source.days == []
    await service.stop()


async def test_service_delivers_to_registered_channel() -> None:
    received = []
    delivered = asyncio.Event()

    def channel(title: str, body: str) -> None:
        received.append((title, body))
        delivered.set()

    store = InMemoryNotifiedStore()
    service = ReminderService(
        FakeSource(),
        RemindersConfig(permission="granted", check_interval_seconds=3600),
        notified_store=store,
        clock=lambda: NOW,
    )
    service.set_notification_callback(channel)

    async with service:
        await asyncio.wait_for(delivered.wait(), timeout=1)
        stats = service.get_stats()

    assert received == [("Oil change", "09:10 · Main St 5")]
    assert store.load() == ["a1"]
    assert stats["is_started"] is True
    assert stats["dispatcher"]["channels"] == 1
    assert service.is_started is False


async def test_crm_app_feeds_reminders_from_gateway() -> None:
    due = datetime.now() + timedelta(minutes=5)
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=[{
            "id": "a1", "title": "APK", "date": due.strftime("%Y-%m-%d"),
            "time": due.strftime("%H:%M"), "location": None,
        }])

    config = AppConfig(
        supabase={"url": "https://project.supabase.co", "anon_key": "anon-key",
                   "service_access_token": "service-token"},
        reminders={"permission": "granted", "check_interval_seconds": 3600},
        storage={"backend": "memory"},
    )
    gateway = SupabaseGateway(config.supabase.url, config.supabase.anon_key,
                              access_token="service-token", transport=httpx.MockTransport(handler))
    crm = CrmApp(config=config, gateway=gateway)
    seen = []
    crm.register_notification_callback(lambda title, body: seen.append(title))

    await crm.startup()
    try:
        notifications = []
        for _ in range(100):
            notifications = await crm.get_notifications(flush=True)
            if notifications:
                break
            await asyncio.sleep(0.01)
        snapshot = crm.snapshot()
    finally:
        await crm.shutdown()

    assert [n["title"] for n in notifications] == ["APK"]
    assert notifications[0]["body"] == due.strftime("%H:%M")
    assert seen == ["APK"]
    assert snapshot["gateway_connected"] is True
    assert requests[0].headers["Authorization"] == "Bearer service-token"
    assert crm.is_started is False
    assert not gateway.is_connected

    # history stays available after the queue is drained
    history = await crm.get_notifications(flush=False)
    assert history[0]["title"] == "APK"
