"""Health transition alerts delivered by email and webhook."""
from __future__ import annotations

import html
import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol
from urllib.parse import quote, urlsplit

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.models import AlertEvent, AlertKind, HealthStatus, OrgContact
from ledgerbridge.obs import ALERT_CHANNEL_FAILURES_COUNTER, ALERTS_DISPATCHED_COUNTER
from ledgerbridge.services.connections import as_utc
from ledgerbridge.services.errors import AlertChannelError

logger = logging.getLogger(__name__)

_PROVIDER_LABELS = {"quickbooks": "QuickBooks", "xero": "Xero"}

_registry_lock = threading.Lock()
_org_locks: dict[str, threading.Lock] = {}


def webhook_label(url: str) -> str:
    """Host of a webhook URL for logs and audit rows; contact input may be malformed."""
    try:
        host = urlsplit(url).netloc
    except ValueError:
        return "invalid-url"
    return host or "invalid-url"


@contextmanager
def org_lock(org_id: str) -> Iterator[None]:
    """Serialize snapshot read, write and alert decision for one organization in this process."""
    with _registry_lock:
        lock = _org_locks.setdefault(org_id, threading.Lock())
    with lock:
        yield


def classify_transition(
    previous: HealthStatus | str | None,
    current: HealthStatus | str,
    *,
    alert_on_yellow: bool = True,
) -> AlertKind | None:
    """Return the alert kind for a snapshot edge, or ``None`` when no alert is due.

    The first evaluation of an organization never alerts.
    """

    if previous is None:
        return None
    prev = HealthStatus(previous)
    nxt = HealthStatus(current)
    if prev == nxt:
        return None
    if nxt == HealthStatus.RED:
        return AlertKind.DEGRADED
    if prev == HealthStatus.RED:
        return AlertKind.RECOVERED
    if alert_on_yellow:
        if nxt == HealthStatus.YELLOW:
            return AlertKind.DEGRADED
        if prev == HealthStatus.YELLOW and nxt == HealthStatus.GREEN:
            return AlertKind.RECOVERED
    return None


@dataclass(slots=True, frozen=True)
class AlertMessage:
    org_id: str
    kind: AlertKind
    previous: HealthStatus | None
    current: HealthStatus
    title: str
    reason: str
    link: str
    recipients: list[str] = field(default_factory=list)
    webhook_urls: list[str] = field(default_factory=list)

    def html_body(self) -> str:
        reason = "".join(
            f"<p style=\"margin:8px 0\">{html.escape(line)}</p>" for line in self.reason.splitlines()
        )
        link = html.escape(self.link, quote=True)
        return (
            "<div style=\"font-family:system-ui\">"
            f"<h2 style=\"margin:0 0 8px 0\">{html.escape(self.title)}</h2>"
            f"{reason}"
            f"<p style=\"margin:8px 0\">Open diagnostics: <a href=\"{link}\">{link}</a></p>"
            "<p style=\"color:#666;margin-top:16px\">"
            "You received this because you're listed as a contact for this organization.</p>"
            "</div>"
        )

    def text_body(self) -> str:
        parts = [self.title]
        if self.reason:
            parts.append(self.reason)
        parts.append(self.link)
        return "\n".join(parts)


class AlertChannel(Protocol):
    name: str

    def send(self, message: AlertMessage) -> str:
        """Deliver ``message``; return ``sent`` or ``skipped``, raise ``AlertChannelError`` on failure."""


class EmailChannel:
    """Sends alerts through a Resend-compatible HTTP email API."""

    name = "email"

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str | None,
        sender: str,
        bcc: str | None = None,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._bcc = bcc
        self._timeout = timeout_seconds
        self._client = client

    def send(self, message: AlertMessage) -> str:
        if not self._api_key or not message.recipients:
            return "skipped"
        body: dict[str, object] = {
            "from": self._sender,
            "to": list(message.recipients),
            "subject": message.title,
            "html": message.html_body(),
        }
        if self._bcc:
            body["bcc"] = self._bcc
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            if self._client is not None:
                response = self._client.post(self._api_url, json=body, headers=headers, timeout=self._timeout)
            else:
                response = httpx.post(self._api_url, json=body, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise AlertChannelError(self.name, f"email delivery failed: {exc}") from exc
        return "sent"


class WebhookChannel:
    """Posts a Slack-compatible ``{"text": ...}`` message to each webhook."""

    name = "webhook"

    def __init__(
        self,
        *,
        default_url: str | None = None,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._default_url = default_url
        self._timeout = timeout_seconds
        self._client = client

    def send(self, message: AlertMessage) -> str:
        urls = list(message.webhook_urls) or ([self._default_url] if self._default_url else [])
        if not urls:
            return "skipped"
        payload = {"text": message.text_body()}
        failures: list[str] = []
        for url in urls:
            try:
                if self._client is not None:
                    response = self._client.post(url, json=payload, timeout=self._timeout)
                else:
                    response = httpx.post(url, json=payload, timeout=self._timeout)
                response.raise_for_status()
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                failures.append(f"{webhook_label(url)}: {exc}")
        if failures:
            raise AlertChannelError(self.name, "; ".join(failures))
        return "sent"


def default_channels(settings: Settings, *, client: httpx.Client | None = None) -> list[AlertChannel]:
    return [
        EmailChannel(
            api_url=settings.alert_email_api_url,
            api_key=settings.alert_email_api_key,
            sender=settings.alert_from,
            bcc=settings.alert_bcc,
            timeout_seconds=settings.alert_timeout_seconds,
            client=client,
        ),
        WebhookChannel(
            default_url=settings.alert_default_webhook_url,
            timeout_seconds=settings.alert_timeout_seconds,
            client=client,
        ),
    ]


class AlertDispatcher:
    """Turns a snapshot edge into at most one alert and exactly one audit event."""

    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        channels: Sequence[AlertChannel] | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._channels = list(channels) if channels is not None else default_channels(self._settings)

    def dispatch(
        self,
        org_id: str,
        previous: HealthStatus | None,
        current: HealthStatus,
        *,
        missing: Sequence[str] = (),
        warnings: Sequence[str] = (),
    ) -> AlertEvent | None:
        kind = classify_transition(previous, current, alert_on_yellow=self._settings.alert_on_yellow)
        if kind is None:
            return None
        now = datetime.now(timezone.utc)
        if self._recently_alerted(org_id, previous, current, kind, now):
            logger.info(
                "suppressed duplicate alert",
                extra={"org_id": org_id, "kind": kind.value, "next_status": current.value},
            )
            return None

        message = self.compose(org_id, kind, previous, current, missing=missing, warnings=warnings)
        channel_results: dict[str, str] = {}
        for channel in self._channels:
            try:
                channel_results[channel.name] = channel.send(message)
            except AlertChannelError as exc:
                self._record_channel_failure(channel_results, org_id, channel.name, exc)
            except Exception as exc:
                logger.exception("alert channel crashed", extra={"org_id": org_id, "channel": channel.name})
                self._record_channel_failure(
                    channel_results, org_id, channel.name, AlertChannelError(channel.name, repr(exc))
                )

        recipients = list(message.recipients) + [
            f"webhook:{webhook_label(url)}" for url in message.webhook_urls
        ]
        event = AlertEvent(
            org_id=org_id,
            prev_status=previous,
            next_status=current,
            kind=kind,
            recipients=recipients,
            channel_results=channel_results,
            created_at=now,
        )
        self._session.add(event)
        self._session.commit()
        ALERTS_DISPATCHED_COUNTER.labels(kind=kind.value).inc()
        logger.info(
            "alert dispatched",
            extra={
                "org_id": org_id,
                "kind": kind.value,
                "prev_status": previous.value if previous is not None else None,
                "next_status": current.value,
            },
        )
        return event

    def compose(
        self,
        org_id: str,
        kind: AlertKind,
        previous: HealthStatus | None,
        current: HealthStatus,
        *,
        missing: Sequence[str] = (),
        warnings: Sequence[str] = (),
    ) -> AlertMessage:
        provider = self._settings.ledger_provider
        label = _PROVIDER_LABELS.get(provider, provider.title())
        status = current.value.upper()
        if kind == AlertKind.DEGRADED:
            title = f"{label} status changed to {status}"
        else:
            title = f"{label} status recovered to {status}"
        reasons: list[str] = []
        if missing:
            reasons.append(f"Missing mappings: {', '.join(missing)}")
        if warnings:
            reasons.append(f"Warnings: {'; '.join(warnings)}")
        link = (
            f"{self._settings.app_dashboard_url.rstrip('/')}/integrations/diagnostics"
            f"?org={quote(org_id, safe='')}"
        )
        contacts = self._session.scalars(
            select(OrgContact).where(OrgContact.org_id == org_id, OrgContact.notify.is_(True))
        ).all()
        emails = list(dict.fromkeys(contact.email for contact in contacts if contact.email))
        webhooks = list(dict.fromkeys(contact.webhook_url for contact in contacts if contact.webhook_url))
        return AlertMessage(
            org_id=org_id,
            kind=kind,
            previous=previous,
            current=current,
            title=title,
            reason="\n".join(reasons),
            link=link,
            recipients=emails,
            webhook_urls=webhooks,
        )

    def _recently_alerted(
        self,
        org_id: str,
        previous: HealthStatus | None,
        current: HealthStatus,
        kind: AlertKind,
        now: datetime,
    ) -> bool:
        """Return ``True`` when the organization's latest event is this same edge, inside the window."""

        window = self._settings.alert_dedupe_window_seconds
        if window <= 0:
            return False
        latest = self._session.scalars(
            select(AlertEvent)
            .where(AlertEvent.org_id == org_id)
            .order_by(AlertEvent.created_at.desc(), AlertEvent.id.desc())
            .limit(1)
        ).first()
        if latest is None or as_utc(latest.created_at) < now - timedelta(seconds=window):
            return False
        return latest.prev_status == previous and latest.next_status == current and latest.kind == kind

    @staticmethod
    def _record_channel_failure(
        channel_results: dict[str, str], org_id: str, channel: str, exc: AlertChannelError
    ) -> None:
        channel_results[channel] = f"error: {exc}"
        ALERT_CHANNEL_FAILURES_COUNTER.labels(channel=channel).inc()
        logger.warning(
            "alert channel failed",
            extra={"org_id": org_id, "channel": channel, "error": str(exc)},
        )


__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "AlertMessage",
    "EmailChannel",
    "WebhookChannel",
    "classify_transition",
    "default_channels",
    "org_lock",
    "webhook_label",
]
