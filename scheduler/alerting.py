"""
Alerting system for timetable change notifications.

This module provides:
- Provider-agnostic alert content built from change events
- Pushover (HTML) and ntfy (plain text) providers
- Sequential dispatch of change alerts and status alerts
"""

import base64
from datetime import datetime, tzinfo
from html import escape
from typing import Dict, List, Optional, Sequence

import httpx
import structlog
from pydantic import BaseModel, Field

from scheduler.exceptions import NotificationDeliveryError
from scheduler.models import (
    AlertConfig, CancelledEvent, ChangeEvent, ChangeType, EarlyFinish, FieldChange,
    ImpactClassification, LateStart, MidDayGap, RestoredEvent, TrackedField
)

logger = structlog.get_logger(__name__)

PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"

NOT_SPECIFIED = "Not specified"
NOT_AVAILABLE = "N/A"
HELD = "Held"

_TITLES = {
    ChangeType.CANCELLED: ("Lesson cancelled!", "❌"),
    ChangeType.RESTORED: ("Lesson restored!", "✅"),
    ChangeType.MODIFIED: ("Lesson changed!", "🔄"),
}

_FIELD_LABELS = {
    TrackedField.STATUS: ("Status", "ℹ️"),
    TrackedField.TEACHER: ("Teacher", "🧑‍🏫"),
    TrackedField.ROOM: ("Room", "📍"),
}


class ChangeLine(BaseModel):
    """One rendered field change."""
    label: str
    icon: str
    old_value: str
    new_value: str
    restored: bool = False


class AlertContent(BaseModel):
    """Semantic fields of an alert, shared by every provider."""
    change_type: ChangeType
    title: str
    icon: str
    subject: str
    time: str
    teacher: Optional[str] = None
    room: Optional[str] = None
    reason: Optional[str] = None
    impact: Optional[str] = None
    changes: List[ChangeLine] = Field(default_factory=list)


def _clock(value: datetime, tz: Optional[tzinfo]) -> str:
    if tz is not None:
        value = value.astimezone(tz)
    return value.strftime("%H:%M")


def format_lesson_time(start: Optional[datetime], end: Optional[datetime], tz: Optional[tzinfo] = None) -> str:
    """Human readable slot, e.g. ``Monday 14 October 2024, 09:00 - 10:00``."""
    if start is None or end is None:
        return NOT_SPECIFIED
    local_start = start.astimezone(tz) if tz is not None else start
    day = f"{local_start:%A} {local_start.day} {local_start:%B %Y}"
    return f"{day}, {_clock(start, tz)} - {_clock(end, tz)}"


def describe_impact(impact: ImpactClassification, tz: Optional[tzinfo] = None) -> str:
    """Short sentence describing what a cancellation means for the day."""
    if isinstance(impact, LateStart):
        return f"Day starts at {_clock(impact.new_start, tz)} (instead of {_clock(impact.original_start, tz)})"
    if isinstance(impact, EarlyFinish):
        return f"Day ends at {_clock(impact.new_end, tz)} (instead of {_clock(impact.original_end, tz)})"
    if isinstance(impact, MidDayGap):
        return f"Free period {_clock(impact.start, tz)} - {_clock(impact.end, tz)}"
    return "No lessons left that day"


def _change_line(change: FieldChange, restored: bool) -> ChangeLine:
    label, icon = _FIELD_LABELS[change.field]
    placeholder = HELD if change.field == TrackedField.STATUS else NOT_AVAILABLE
    is_restoration = restored and change.field == TrackedField.STATUS
    return ChangeLine(
        label=label,
        icon="✅" if is_restoration else icon,
        old_value=change.old_value or placeholder,
        new_value=change.new_value or placeholder,
        restored=is_restoration
    )


def build_alert_content(event: ChangeEvent, tz: Optional[tzinfo] = None) -> AlertContent:
    """Turn a change event into provider-agnostic alert content."""
    title, icon = _TITLES[event.change_type]
    lesson = event.lesson
    content = AlertContent(
        change_type=event.change_type,
        title=title,
        icon=icon,
        subject=lesson.subject_or_title,
        time=format_lesson_time(lesson.start_time, lesson.end_time, tz)
    )

    if isinstance(event, CancelledEvent):
        content.teacher = lesson.primary_teacher or NOT_SPECIFIED
        content.room = lesson.primary_room or NOT_SPECIFIED
        content.reason = event.reason_status
        content.impact = describe_impact(event.impact, tz)
    else:
        restored = isinstance(event, RestoredEvent)
        content.changes = [_change_line(change, restored) for change in event.field_changes]

    return content


class NotificationProvider:
    """Base class for notification targets."""

    name = "base"

    def render(self, content: AlertContent) -> str:
        raise NotImplementedError

    async def send(self, client: httpx.AsyncClient, message: str) -> None:
        raise NotImplementedError

    def _check_response(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        raise NotificationDeliveryError(
            f"{self.name} request not successful: {response.status_code} {response.text}",
            provider=self.name,
            status_code=response.status_code
        )


class PushoverProvider(NotificationProvider):
    """Rich HTML messages through the Pushover API."""

    name = "pushover"

    def __init__(self, user_key: Optional[str], api_token: Optional[str], priority: int = 0):
        self.user_key = user_key
        self.api_token = api_token
        self.priority = priority

    def render(self, content: AlertContent) -> str:
        def bold(text: str) -> str:
            return f"<b>{text}</b>"

        def code(text: str) -> str:
            return f"<code>{escape(text, quote=False)}</code>"

        def plain(value: str) -> str:
            return escape(value, quote=False)

        lines = [f"{bold(content.title)} {content.icon}"]
        lines.append(f"- {bold('📚 Subject:')} {plain(content.subject)}")
        lines.append(f"- {bold('🗓️ Date:')} {plain(content.time)}")
        if content.teacher:
            lines.append(f"- {bold('🧑‍🏫 Teacher:')} {plain(content.teacher)}")
        if content.room:
            lines.append(f"- {bold('📍 Room:')} {plain(content.room)}")
        if content.reason:
            lines.append(f"- {bold('ℹ️ Reason:')} {plain(content.reason)}")
        if content.impact:
            lines.append(f"- {bold('⏱️ Impact:')} {plain(content.impact)}")

        if content.changes:
            lines.append("")
            lines.append(bold("Change details:"))
            for change in content.changes:
                if change.restored:
                    lines.append(
                        f"- {change.icon} {bold(change.label + ':')} The lesson is {bold('back on')} "
                        f"(was cancelled: {code(change.old_value)})"
                    )
                else:
                    lines.append(
                        f"- {change.icon} {bold(change.label + ':')} "
                        f"{code(change.old_value)} → {code(change.new_value)}"
                    )

        return "\n".join(lines)

    async def send(self, client: httpx.AsyncClient, message: str) -> None:
        if not self.user_key or not self.api_token:
            raise NotificationDeliveryError("Pushover credentials are not configured", provider=self.name)

        try:
            response = await client.post(PUSHOVER_API_URL, data={
                "token": self.api_token,
                "user": self.user_key,
                "message": message,
                "html": "1",
                "priority": str(self.priority),
            })
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Pushover request failed: {e}", provider=self.name) from e

        self._check_response(response)


def encode_header_value(value: str) -> str:
    """RFC 2047 encode non-ASCII header values, which ntfy decodes."""
    if value.isascii():
        return value
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


class NtfyProvider(NotificationProvider):
    """Plain text messages published to an ntfy topic."""

    name = "ntfy"

    def __init__(self, url: str, priority: int = 3, title: str = "Timetable watch"):
        self.url = url
        self.priority = priority
        self.title = title

    def render(self, content: AlertContent) -> str:
        # ntfy only renders markdown in its web app
        lines = [f"{content.title} {content.icon}"]
        lines.append(f"- 📚 Subject: {content.subject}")
        lines.append(f"- 🗓️ Date: {content.time}")
        if content.teacher:
            lines.append(f"- 🧑‍🏫 Teacher: {content.teacher}")
        if content.room:
            lines.append(f"- 📍 Room: {content.room}")
        if content.reason:
            lines.append(f"- ℹ️ Reason: {content.reason}")
        if content.impact:
            lines.append(f"- ⏱️ Impact: {content.impact}")

        if content.changes:
            lines.append("")
            lines.append("Change details:")
            for change in content.changes:
                if change.restored:
                    lines.append(
                        f"- {change.icon} {change.label}: The lesson is back on (was cancelled: {change.old_value})"
                    )
                else:
                    lines.append(f"- {change.icon} {change.label}: {change.old_value} → {change.new_value}")

        return "\n".join(lines)

    async def send(self, client: httpx.AsyncClient, message: str) -> None:
        try:
            response = await client.post(
                self.url,
                content=message.encode("utf-8"),
                headers={"Priority": str(self.priority), "Title": encode_header_value(self.title)}
            )
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"ntfy request failed: {e}", provider=self.name) from e

        self._check_response(response)


def build_providers(alert_config: AlertConfig) -> Dict[str, NotificationProvider]:
    """Built-in providers configured from the alert configuration."""
    return {
        PushoverProvider.name: PushoverProvider(
            user_key=alert_config.pushover_user_key,
            api_token=alert_config.pushover_api_token,
            priority=alert_config.pushover_priority
        ),
        NtfyProvider.name: NtfyProvider(
            url=alert_config.ntfy_url,
            priority=alert_config.ntfy_priority,
            title=alert_config.ntfy_title
        ),
    }


class AlertManager:
    """Manager for rendering and delivering alerts."""

    def __init__(
        self,
        alert_config: AlertConfig,
        providers: Optional[Dict[str, NotificationProvider]] = None,
        tz: Optional[tzinfo] = None
    ):
        """
        Initialize alert manager.

        Args:
            alert_config: Alert configuration
            providers: Provider registry by name (built-ins when omitted)
            tz: Timezone used to display lesson times
        """
        self.config = alert_config
        self.providers = providers if providers is not None else build_providers(alert_config)
        self.tz = tz
        self.logger = logger.bind(component="alert_manager")

    def register_provider(self, provider: NotificationProvider) -> None:
        """Add or replace a provider in the registry."""
        self.providers[provider.name] = provider

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.request_timeout)

    async def deliver(
        self,
        event: ChangeEvent,
        provider_name: str,
        client: Optional[httpx.AsyncClient] = None
    ) -> int:
        """
        Render an event for one provider and send it.

        Returns:
            1 when delivered, 0 otherwise
        """
        provider = self.providers.get(provider_name)
        if provider is None:
            self.logger.warning("Unknown provider, cannot build message", provider=provider_name)
            return 0

        message = provider.render(build_alert_content(event, self.tz))

        if client is None:
            async with self._client() as own_client:
                return await self._send(provider, own_client, message, event.change_type.value)
        return await self._send(provider, client, message, event.change_type.value)

    async def _send(
        self,
        provider: NotificationProvider,
        client: httpx.AsyncClient,
        message: str,
        kind: str
    ) -> int:
        try:
            await provider.send(client, message)
        except NotificationDeliveryError as e:
            self.logger.error(
                "Failed to deliver notification",
                provider=provider.name,
                kind=kind,
                status_code=e.status_code,
                error=str(e)
            )
            return 0
        except Exception as e:
            self.logger.error(
                "Unexpected error delivering notification",
                provider=provider.name,
                kind=kind,
                error=str(e),
                exc_info=True
            )
            return 0

        self.logger.debug("Delivered notification", provider=provider.name, kind=kind)
        return 1

    async def send_change_alerts(self, events: Sequence[ChangeEvent]) -> int:
        """
        Deliver every event to every enabled provider, one after another.

        Returns:
            Number of messages delivered
        """
        if not self.config.enabled or not events:
            return 0

        sent_count = 0
        async with self._client() as client:
            for event in events:
                for provider_name in self.config.enabled_providers:
                    sent_count += await self.deliver(event, provider_name, client)

        self.logger.info(
            "Processed change alerts",
            total_changes=len(events),
            notifications_sent=sent_count
        )
        return sent_count

    async def send_status_alert(self, message: str) -> int:
        """Send a service status message to every enabled provider."""
        if not self.config.enable_status_alert:
            return 0

        sent_count = 0
        async with self._client() as client:
            for provider_name in self.config.enabled_providers:
                provider = self.providers.get(provider_name)
                if provider is None:
                    self.logger.warning("Unknown provider, cannot send status", provider=provider_name)
                    continue
                sent_count += await self._send(provider, client, message, "status")

        return sent_count
