"""Application orchestration for programmatic access.

This module centralizes startup/shutdown of the CRM backend so it can be
reused by different front-ends (terminal, HTTP API, etc.).
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional

from config.config import AppConfig, load_config, validate_config
from zncrm.gateway.auth import AuthClient
from zncrm.gateway.supabase_client import SupabaseGateway
from zncrm.reminders.reminder_service import ReminderService
from zncrm.utils.logger import log_error, log_info, log_warning, setup_logging


@dataclass
class NotificationRecord:
    """Container for captured reminder notifications."""

    title: str
    body: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
        }


class CrmApp:
    """Coordinates the backend gateway and the reminder service."""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[AppConfig] = None,
        gateway: Optional[SupabaseGateway] = None,
    ) -> None:
        self._config_path = config_path
        self._config: Optional[AppConfig] = config
        self._gateway: Optional[SupabaseGateway] = gateway
        self._auth: Optional[AuthClient] = None
        self._reminder_service: Optional[ReminderService] = None

        self._startup_lock = asyncio.Lock()
        self._is_started = False

        # Notification handling
        self._notification_queue: asyncio.Queue[NotificationRecord] = asyncio.Queue(maxsize=100)
        self._notification_history: Deque[NotificationRecord] = deque(maxlen=100)
        self._external_notification_callback: Optional[Callable[[str, str], None]] = None

    @property
    def config(self) -> AppConfig:
        if not self._config:
            raise RuntimeError("CrmApp not started yet; config unavailable")
        return self._config

    @property
    def gateway(self) -> SupabaseGateway:
        if not self._gateway:
            raise RuntimeError("CrmApp not started yet; gateway unavailable")
        return self._gateway

    @property
    def auth(self) -> AuthClient:
        if not self._auth:
            raise RuntimeError("CrmApp not started yet; auth unavailable")
        return self._auth

    @property
    def reminder_service(self) -> ReminderService:
        if not self._reminder_service:
            raise RuntimeError("CrmApp not started yet; reminder service unavailable")
        return self._reminder_service

    @property
    def is_started(self) -> bool:
        return self._is_started

    def gateway_for(self, access_token: Optional[str]) -> SupabaseGateway:
        """Gateway acting as the user behind ``access_token``."""
        if not access_token:
            return self.gateway
        return self.gateway.with_access_token(access_token)

    async def startup(self) -> None:
        """Load configuration and initialize dependencies."""

        async with self._startup_lock:
            if self._is_started:
                return

            if self._config is None:
                log_info("CrmApp startup: loading configuration")
                self._config = load_config(self._config_path)

            setup_logging(self._config.logging.level, self._config.terminal.show_timestamps)
            for problem in validate_config(self._config):
                log_warning(f"Configuration: {problem}")

            if self._gateway is None:
                supabase = self._config.supabase
                self._gateway = SupabaseGateway(
                    url=supabase.url,
                    api_key=supabase.anon_key,
                    access_token=supabase.service_access_token,
                    media_bucket=supabase.media_bucket,
                    timeout=supabase.timeout_seconds,
                )
            log_info("CrmApp startup: connecting Supabase gateway")
            await self._gateway.connect()
            self._auth = AuthClient(self._gateway)

            log_info("CrmApp startup: starting reminder service")
            self._reminder_service = ReminderService(
                source=self._gateway,
                config=self._config.reminders,
                storage=self._config.storage,
            )
            self._reminder_service.set_notification_callback(self._handle_notification, channel="feed")
            await self._reminder_service.start()

            self._is_started = True
            log_info("CrmApp startup complete")

    async def shutdown(self) -> None:
        """Gracefully shut down services."""

        if not self._is_started:
            return

        log_info("CrmApp shutdown: stopping services")

        if self._reminder_service:
            try:
                await self._reminder_service.stop()
            except Exception as exc:  # pragma: no cover - best effort cleanup
                log_error(f"Error stopping ReminderService: {exc}")

        if self._gateway:
            try:
                await self._gateway.disconnect()
            except Exception as exc:  # pragma: no cover - best effort cleanup
                log_error(f"Error disconnecting gateway: {exc}")

        self._is_started = False
        log_info("CrmApp shutdown complete")

    def get_reminder_stats(self) -> Dict[str, Any]:
        """Return reminder service status information."""

        if not self._reminder_service:
            raise RuntimeError("CrmApp not started yet; stats unavailable")

        return self._reminder_service.get_stats()

    async def get_notifications(self, *, limit: int = 20, flush: bool = True) -> List[Dict[str, Any]]:
        """Retrieve reminder notifications captured so far.

        Args:
            limit: Maximum number of notifications to return
            flush: If True, consume pending notifications; otherwise return recent history
        """

        if flush:
            notifications: List[Dict[str, Any]] = []
            for _ in range(limit):
                try:
                    record = self._notification_queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                notifications.append(record.to_dict())

            if notifications:
                return notifications

        # Fallback to history snapshot
        history_sample = list(self._notification_history)[:limit]
        return [record.to_dict() for record in history_sample]

    def register_notification_callback(self, callback: Callable[[str, str], None]) -> None:
        """Register an additional callback for real-time notifications."""

        self._external_notification_callback = callback

    def snapshot(self) -> Dict[str, Any]:
        """Return a health snapshot of the CRM backend state."""

        return {
            "is_started": self._is_started,
            "config_loaded": self._config is not None,
            "gateway_connected": bool(self._gateway and self._gateway.is_connected),
            "reminder_stats": self._reminder_service.get_stats() if self._reminder_service else None,
        }

    def _handle_notification(self, title: str, body: str) -> None:
        """Capture notifications emitted by the reminder service."""

        record = NotificationRecord(
            title=title,
            body=body,
            created_at=datetime.now(timezone.utc),
        )

        self._notification_history.appendleft(record)

        try:
            self._notification_queue.put_nowait(record)
        except asyncio.QueueFull:
            # Drop the oldest pending item to make room and retry
            try:
                _ = self._notification_queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            else:
                self._notification_queue.put_nowait(record)

        if self._external_notification_callback:
            try:
                self._external_notification_callback(title, body)
            except Exception as exc:  # pragma: no cover - callback should not break flow
                log_error(f"External notification callback failed: {exc}")
