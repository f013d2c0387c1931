"""Reminder service that wires the appointment monitor to its collaborators.

This module provides the ReminderService class, which builds the notified-set
store, permission provider, dispatcher and AppointmentMonitor from the
reminders and storage configuration.
"""

from datetime import datetime
from typing import Callable, Optional

from config.config import RemindersConfig, StorageConfig
from zncrm.reminders.appointment_monitor import AppointmentMonitor, AppointmentSource
from zncrm.reminders.notification_dispatcher import (
    NotificationCallback,
    NotificationDispatcher,
    NotificationPermission,
    PermissionProvider,
    StaticPermission,
)
from zncrm.reminders.notified_store import (
    InMemoryNotifiedStore,
    JsonFileNotifiedStore,
    NotifiedStore,
)
from zncrm.utils.logger import log_info, log_debug


def build_notified_store(config: StorageConfig) -> NotifiedStore:
    """Create the notified-set store selected by configuration."""
    if config.backend == "memory":
        return InMemoryNotifiedStore()
    return JsonFileNotifiedStore(config.path, key=config.notified_key)


class ReminderService:
    """Main service for appointment reminders.

    This service:
    - Builds the AppointmentMonitor and its collaborators from configuration
    - Lets front-ends register notification channels
    - Manages the reminder lifecycle (start/stop)
    """

    def __init__(
        self,
        source: AppointmentSource,
        config: RemindersConfig,
        storage: Optional[StorageConfig] = None,
        notified_store: Optional[NotifiedStore] = None,
        permission: Optional[PermissionProvider] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the reminder service.

        Args:
            source: Appointment source, normally the Supabase gateway
            config: Reminders configuration
            storage: Storage configuration for the notified-set
            notified_store: Explicit store, overrides ``storage``
            permission: Explicit permission provider, overrides ``config.permission``
            clock: Returns the current local time
        """
        self.config = config
        self.store = notified_store or build_notified_store(storage or StorageConfig())
        self.permission = permission or StaticPermission(
            NotificationPermission(config.permission),
            grant_on_request=config.grant_on_request,
        )

        self.dispatcher = NotificationDispatcher()
        self.monitor = AppointmentMonitor(
            source=source,
            notification_dispatcher=self.dispatcher,
            notified_store=self.store,
            permission=self.permission,
            check_interval_seconds=config.check_interval_seconds,
            window_minutes=config.window_minutes,
            fallback_title=config.fallback_title,
            clock=clock,
        )

        self._is_started = False

        log_info("ReminderService initialized")

    @property
    def is_started(self) -> bool:
        return self._is_started

    async def start(self) -> None:
        """Start the reminder service."""
        if self._is_started:
            log_debug("ReminderService already started")
            return

        if not self.config.enabled:
            log_info("Reminders disabled in configuration")
            return

        await self.monitor.start()

        self._is_started = True
        log_info("ReminderService started successfully")

    async def stop(self) -> None:
        """Stop the reminder service."""
        if not self._is_started:
            return

        await self.monitor.stop()

        self._is_started = False
        log_info("ReminderService stopped")

    def set_notification_callback(self, callback: NotificationCallback, channel: str = "terminal") -> None:
        """Register a channel that receives (title, body) for each reminder.

        Args:
            callback: Function to call when a reminder should be shown
            channel: Channel name; registering the same name replaces it
        """
        self.dispatcher.register_channel(channel, callback)
        log_debug(f"Notification channel '{channel}' set for ReminderService")

    def get_stats(self) -> dict:
        """Get reminder service statistics."""
        return {
            "is_started": self._is_started,
            "enabled": self.config.enabled,
            "monitor": self.monitor.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
