"""Reminders module for appointment notifications."""

from zncrm.reminders.reminder_service import ReminderService
from zncrm.reminders.appointment_monitor import AppointmentMonitor, format_reminder
from zncrm.reminders.notification_dispatcher import (
    Notification,
    NotificationDispatcher,
    NotificationPermission,
    StaticPermission,
)
from zncrm.reminders.notified_store import InMemoryNotifiedStore, JsonFileNotifiedStore

__all__ = [
    'ReminderService',
    'AppointmentMonitor',
    'format_reminder',
    'Notification',
    'NotificationDispatcher',
    'NotificationPermission',
    'StaticPermission',
    'InMemoryNotifiedStore',
    'JsonFileNotifiedStore',
]
