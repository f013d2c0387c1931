"""Notification delivery and notification permission.

A notification is a ``(title, body)`` pair handed to every registered
channel (terminal, HTTP notification feed, ...). Whether notifications may be
shown at all is decided by a tri-state permission, mirroring the desktop
notification permission model: ``default`` (not asked yet), ``granted`` or
``denied``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from zncrm.utils.logger import log_info, log_error, log_debug


NotificationCallback = Callable[[str, str], None]


class NotificationPermission(str, Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class PermissionProvider(Protocol):
    """Capability check for showing notifications."""

    @property
    def state(self) -> NotificationPermission:
        ...

    async def request(self) -> NotificationPermission:
        """Ask for permission; only meaningful in the default state."""
        ...


class StaticPermission:
    """Permission decided by configuration.

    A request from the default state resolves to granted or denied according
    to ``grant_on_request``; after that the state is fixed.
    """

    def __init__(
        self,
        state: NotificationPermission = NotificationPermission.DEFAULT,
        grant_on_request: bool = True
    ):
        self._state = NotificationPermission(state)
        self.grant_on_request = grant_on_request
        self.request_count = 0

    @property
    def state(self) -> NotificationPermission:
        return self._state

    async def request(self) -> NotificationPermission:
        self.request_count += 1
        if self._state == NotificationPermission.DEFAULT:
            self._state = (
                NotificationPermission.GRANTED if self.grant_on_request
                else NotificationPermission.DENIED
            )
            log_info(f"Notification permission {self._state.value}")
        return self._state


@dataclass
class Notification:
    """A notification shown to the user."""
    title: str
    body: str
    appointment_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "title": self.title,
            "body": self.body,
            "appointment_id": self.appointment_id,
            "created_at": self.created_at.isoformat(),
        }


class NotificationDispatcher:
    """Hands notifications to every registered channel.

    Channel failures are logged and never propagate to the caller.
    """

    def __init__(self):
        self._channels: Dict[str, NotificationCallback] = {}
        self._sent_count = 0
        self._failed_count = 0
        log_debug("NotificationDispatcher initialized")

    def register_channel(self, name: str, callback: NotificationCallback) -> None:
        """Register (or replace) a named channel.

        Args:
            name: Channel name, e.g. "terminal"
            callback: Called with (title, body)
        """
        self._channels[name] = callback
        log_debug(f"Notification channel registered: {name}")

    def unregister_channel(self, name: str) -> None:
        self._channels.pop(name, None)

    @property
    def channels(self) -> List[str]:
        return list(self._channels)

    def notify(self, title: str, body: str, appointment_id: Optional[str] = None) -> Notification:
        """Show a notification on all channels.

        Args:
            title: Notification title
            body: Notification body
            appointment_id: Appointment the notification is about

        Returns:
            The dispatched notification
        """
        notification = Notification(title=title, body=body, appointment_id=appointment_id)

        if not self._channels:
            log_info(f"Notification (no channel registered): {title} - {body}")

        for name, callback in list(self._channels.items()):
            try:
                callback(title, body)
                log_debug(f"Notification sent to {name}: {title}")
            except Exception as e:
                self._failed_count += 1
                log_error(f"Failed to send {name} notification: {e}")

        self._sent_count += 1
        return notification

    def get_stats(self) -> Dict[str, int]:
        return {
            "sent": self._sent_count,
            "channel_failures": self._failed_count,
            "channels": len(self._channels),
        }
