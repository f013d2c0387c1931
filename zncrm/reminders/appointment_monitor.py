"""Appointment monitor: polls today's appointments and raises reminders.

Every poll fetches the appointments on the current local calendar day and
notifies once for each appointment that starts within the reminder window
(0-15 minutes from now by default). Appointment ids that were notified are
kept in the notified-set so the same appointment is never announced twice,
including across restarts.

Reminders are best effort: permission problems, fetch errors, malformed
records and storage failures are logged and skipped, never raised.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple, Any

from zncrm.models.crm import AppointmentSnapshot
from zncrm.reminders.notification_dispatcher import (
    Notification,
    NotificationDispatcher,
    NotificationPermission,
    PermissionProvider,
)
from zncrm.reminders.notified_store import NotifiedStore
from zncrm.utils.date_parser import parse_appointment_datetime, today_local
from zncrm.utils.logger import log_info, log_debug, log_warning, log_error


DEFAULT_FALLBACK_TITLE = "Afspraak"
BODY_SEPARATOR = " · "

# In-flight polls get this long to finish when the monitor stops
STOP_GRACE_SECONDS = 5.0


class AppointmentSource(Protocol):
    """Where the monitor reads appointments from (the Supabase gateway)."""

    async def list_appointments_on(self, day: str) -> List[AppointmentSnapshot]:
        ...


def format_reminder(
    appointment: AppointmentSnapshot,
    fallback_title: str = DEFAULT_FALLBACK_TITLE
) -> Tuple[str, str]:
    """Build the (title, body) of an appointment reminder.

    The body is the appointment time, followed by the location when there is one.
    """
    title = appointment.title or fallback_title
    parts = [appointment.time or ""]
    if appointment.location:
        parts.append(appointment.location)
    return title, BODY_SEPARATOR.join(parts)


class AppointmentMonitor:
    """Periodically checks today's appointments and sends due reminders.

    The monitor runs as background asyncio tasks:
    1. One poll immediately on start, then one every ``check_interval_seconds``
    2. Polls are started on a fixed schedule and are not chained to each other,
       so a slow backend only delays its own cycle
    3. ``stop()`` cancels the schedule and sets a cancellation flag; a poll
       whose fetch resolves after that sends nothing
    """

    def __init__(
        self,
        source: AppointmentSource,
        notification_dispatcher: NotificationDispatcher,
        notified_store: NotifiedStore,
        permission: PermissionProvider,
        check_interval_seconds: float = 60,
        window_minutes: float = 15,
        fallback_title: str = DEFAULT_FALLBACK_TITLE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the appointment monitor.

        Args:
            source: Provides the appointments of a calendar day
            notification_dispatcher: Dispatcher for sending notifications
            notified_store: Persistence for ids that were already notified
            permission: Notification permission capability
            check_interval_seconds: Seconds between polls
            window_minutes: Notify when an appointment starts within this many minutes
            fallback_title: Title for appointments without one
            clock: Returns the current local time
        """
        self.source = source
        self.dispatcher = notification_dispatcher
        self.store = notified_store
        self.permission = permission
        self.check_interval = check_interval_seconds
        self.window_minutes = window_minutes
        self.fallback_title = fallback_title
        self.clock = clock

        # Control flags
        self._is_running: bool = False
        self._cancelled: bool = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._permission_task: Optional[asyncio.Task] = None
        self._poll_tasks: Set[asyncio.Task] = set()

        # Stats
        self._polls_run = 0
        self._polls_skipped = 0
        self._fetch_failures = 0
        self._reminders_sent = 0
        self._last_poll_at: Optional[datetime] = None

        log_info(f"AppointmentMonitor initialized: window {window_minutes} min, "
                 f"check interval {check_interval_seconds}s")

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def start(self) -> None:
        """Start polling; asks for notification permission first if never asked."""
        if self._is_running:
            log_debug("AppointmentMonitor already running")
            return

        self._is_running = True
        self._cancelled = False

        if self.permission.state == NotificationPermission.DEFAULT:
            self._permission_task = asyncio.create_task(self._request_permission())

        self._monitor_task = asyncio.create_task(self._monitor_loop())
        log_info("AppointmentMonitor started")

    async def stop(self) -> None:
        """Stop polling. In-flight polls finish without notifying."""
        if not self._is_running:
            return

        self._is_running = False
        self._cancelled = True

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        pending = [task for task in (self._permission_task, *self._poll_tasks) if task and not task.done()]
        if pending:
            _, still_pending = await asyncio.wait(pending, timeout=STOP_GRACE_SECONDS)
            for task in still_pending:
                task.cancel()
            if still_pending:
                await asyncio.gather(*still_pending, return_exceptions=True)

        log_info("AppointmentMonitor stopped")

    async def _request_permission(self) -> None:
        try:
            state = await self.permission.request()
            log_debug(f"Notification permission request answered: {state.value}")
        except Exception as e:
            log_debug(f"Notification permission request failed: {e}")

    async def _monitor_loop(self) -> None:
        """Start a poll every check interval until stopped."""
        log_debug("Appointment monitor loop started")

        while self._is_running:
            self._spawn_poll()
            try:
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                log_debug("Monitor loop cancelled")
                break

        log_debug("Appointment monitor loop ended")

    def _spawn_poll(self) -> None:
        task = asyncio.create_task(self.poll())
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)

    async def poll(self) -> List[Notification]:
        """Run one poll cycle.

        Returns:
            The notifications sent during this cycle
        """
        if self._cancelled:
            return []

        if self.permission.state != NotificationPermission.GRANTED:
            self._polls_skipped += 1
            log_debug(f"Skipping appointment poll, permission is {self.permission.state.value}")
            return []

        day = today_local(self.clock())
        try:
            appointments = await self.source.list_appointments_on(day)
        except Exception as e:
            self._fetch_failures += 1
            log_warning(f"Could not fetch appointments for {day}: {e}")
            return []

        if self._cancelled:
            log_debug("Monitor stopped during fetch; discarding poll results")
            return []

        now = self.clock()
        self._polls_run += 1
        self._last_poll_at = now

        notified_order = self._load_notified()
        notified = set(notified_order)
        sent: List[Notification] = []

        for appointment in appointments or []:
            due_at = parse_appointment_datetime(appointment.date, appointment.time)
            if due_at is None:
                log_debug(f"Skipping appointment {appointment.id}: no usable date/time")
                continue

            diff_minutes = (due_at - now).total_seconds() / 60
            if not 0 <= diff_minutes <= self.window_minutes:
                continue
            if appointment.id in notified:
                continue

            title, body = format_reminder(appointment, self.fallback_title)
            log_info(f"Triggering reminder for '{title}' ({diff_minutes:.1f} min ahead)")
            try:
                sent.append(self.dispatcher.notify(title, body, appointment_id=appointment.id))
            except Exception as e:
                log_error(f"Reminder dispatch failed for {appointment.id}: {e}")

            notified.add(appointment.id)
            notified_order.append(appointment.id)

        self._save_notified(notified_order)
        self._reminders_sent += len(sent)
        return sent

    def _load_notified(self) -> List[str]:
        try:
            return list(self.store.load())
        except Exception as e:
            log_debug(f"Notified-set unreadable, starting empty: {e}")
            return []

    def _save_notified(self, ids: List[str]) -> None:
        try:
            self.store.save(ids)
        except Exception as e:
            log_debug(f"Notified-set write failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get monitoring statistics."""
        return {
            "is_running": self._is_running,
            "permission": self.permission.state.value,
            "polls_run": self._polls_run,
            "polls_skipped": self._polls_skipped,
            "fetch_failures": self._fetch_failures,
            "reminders_sent": self._reminders_sent,
            "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
        }
