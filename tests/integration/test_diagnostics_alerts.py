from __future__ import annotations

import httpx
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from conftest import ORG_ID, RecordingChannel, connect_org, map_buckets
from ledgerbridge.models import (
    AccountMapping,
    AlertEvent,
    AlertKind,
    DiagnosticsStatus,
    ExternalAccount,
    HealthStatus,
    IntegrationToken,
    OrgContact,
)
from ledgerbridge.services.alerts import AlertDispatcher, AlertMessage, WebhookChannel
from ledgerbridge.services.bucket_map import REQUIRED_BUCKETS
from ledgerbridge.services.diagnostics import DiagnosticsService


def _service(session: Session, settings, *channels) -> DiagnosticsService:
    dispatcher = AlertDispatcher(session, settings=settings, channels=list(channels))
    return DiagnosticsService(session, settings=settings, dispatcher=dispatcher)


def _event_count(session: Session) -> int:
    return session.scalar(select(func.count()).select_from(AlertEvent))


def test_disconnected_org_is_red_with_every_bucket_missing(db_session: Session, settings) -> None:
    map_buckets(db_session)
    report = _service(db_session, settings).evaluate(ORG_ID)

    assert report.overall == HealthStatus.RED
    assert report.health.connected is False
    assert report.missing == list(REQUIRED_BUCKETS)
    assert report.warnings == []


def test_type_mismatch_is_a_yellow_warning(db_session: Session, settings) -> None:
    connect_org(db_session)
    map_buckets(db_session)
    revenue = db_session.scalars(select(AccountMapping).where(AccountMapping.bucket == "revenue")).one()
    db_session.add(
        ExternalAccount(
            org_id=ORG_ID,
            provider="quickbooks",
            external_id=revenue.external_account_id,
            name="Checking",
            account_type="Bank",
        )
    )
    db_session.commit()

    report = _service(db_session, settings).evaluate(ORG_ID)

    assert report.overall == HealthStatus.YELLOW
    assert report.warnings == ["revenue → Checking (Bank)"]


def test_evaluate_without_save_writes_nothing(db_session: Session, settings) -> None:
    run = _service(db_session, settings).run(ORG_ID, save=False)

    assert run.saved is False
    assert db_session.get(DiagnosticsStatus, ORG_ID) is None


def test_transition_sequence_produces_one_event_per_edge(db_session: Session, settings) -> None:
    channel = RecordingChannel()
    service = _service(db_session, settings, channel)
    connect_org(db_session)
    map_buckets(db_session)

    service.run(ORG_ID, save=True)
    service.run(ORG_ID, save=True)
    assert _event_count(db_session) == 0

    db_session.execute(delete(IntegrationToken))
    db_session.commit()
    degraded = service.run(ORG_ID, save=True)
    service.run(ORG_ID, save=True)
    assert _event_count(db_session) == 1
    assert degraded.alert is not None
    assert degraded.alert.kind == AlertKind.DEGRADED

    connect_org(db_session)
    recovered = service.run(ORG_ID, save=True)
    assert _event_count(db_session) == 2
    assert recovered.alert.kind == AlertKind.RECOVERED
    assert recovered.previous == HealthStatus.RED

    titles = [message.title for message in channel.messages]
    assert titles == ["QuickBooks status changed to RED", "QuickBooks status recovered to GREEN"]
    assert channel.messages[0].reason.startswith("Missing mappings: revenue, shipping_income")
    assert channel.messages[0].recipients == ["owner@demo.test"]
    assert channel.messages[0].link == "https://app.test/integrations/diagnostics?org=org-demo"


def test_channel_failure_still_records_event(db_session: Session, settings) -> None:
    broken = RecordingChannel("email", fail=True)
    working = RecordingChannel("webhook")
    service = _service(db_session, settings, broken, working)
    connect_org(db_session)
    map_buckets(db_session)
    service.run(ORG_ID, save=True)

    db_session.execute(delete(AccountMapping).where(AccountMapping.bucket == "clearing"))
    db_session.commit()
    run = service.run(ORG_ID, save=True)

    assert run.report.overall == HealthStatus.RED
    event = db_session.scalars(select(AlertEvent)).one()
    assert event.channel_results["email"].startswith("error:")
    assert event.channel_results["webhook"] == "sent"
    assert event.recipients == ["owner@demo.test"]
    assert db_session.get(DiagnosticsStatus, ORG_ID).overall == HealthStatus.RED


def test_dedupe_window_suppresses_repeat_alert(db_session: Session, settings) -> None:
    windowed = settings.model_copy(update={"alert_dedupe_window_seconds": 60})
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(db_session, settings=windowed, channels=[channel])

    first = dispatcher.dispatch(ORG_ID, HealthStatus.GREEN, HealthStatus.RED, missing=["clearing"])
    second = dispatcher.dispatch(ORG_ID, HealthStatus.GREEN, HealthStatus.RED, missing=["clearing"])

    assert first is not None
    assert second is None
    assert len(channel.messages) == 1
    assert _event_count(db_session) == 1


def test_save_keeps_test_posting_fields_unless_supplied(db_session: Session, settings) -> None:
    service = _service(db_session, settings)
    service.run(ORG_ID, save=True, last_test_forward_id="101", last_test_reverse_id="102")
    service.run(ORG_ID, save=True)

    snapshot = db_session.get(DiagnosticsStatus, ORG_ID)
    assert snapshot.last_test_forward_id == "101"
    assert snapshot.last_test_reverse_id == "102"


def test_contacts_opted_out_are_not_notified(db_session: Session, settings) -> None:
    db_session.add(OrgContact(org_id=ORG_ID, email="muted@demo.test", notify=False))
    db_session.add(OrgContact(org_id=ORG_ID, webhook_url="https://hooks.test/abc", notify=True))
    db_session.commit()
    dispatcher = AlertDispatcher(db_session, settings=settings, channels=[])

    event = dispatcher.dispatch(ORG_ID, HealthStatus.RED, HealthStatus.GREEN)

    assert event.kind == AlertKind.RECOVERED
    assert event.recipients == ["owner@demo.test", "webhook:hooks.test"]


class ExplodingChannel:
    name = "sms"

    def send(self, message: AlertMessage) -> str:
        raise RuntimeError("gateway exploded")


def test_unexpected_channel_exception_still_records_event(db_session: Session, settings) -> None:
    working = RecordingChannel("webhook")
    dispatcher = AlertDispatcher(db_session, settings=settings, channels=[ExplodingChannel(), working])

    event = dispatcher.dispatch(ORG_ID, HealthStatus.GREEN, HealthStatus.RED)

    assert event is not None
    assert event.channel_results["sms"].startswith("error: sms: RuntimeError")
    assert event.channel_results["webhook"] == "sent"
    assert _event_count(db_session) == 1


def test_malformed_contact_webhook_is_a_channel_error(db_session: Session, settings) -> None:
    db_session.add(OrgContact(org_id=ORG_ID, webhook_url="http://[not-a-host", notify=True))
    db_session.commit()

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("name resolution failed", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        channel = WebhookChannel(client=http_client)
        dispatcher = AlertDispatcher(db_session, settings=settings, channels=[channel])
        event = dispatcher.dispatch(ORG_ID, HealthStatus.GREEN, HealthStatus.RED)

    assert event is not None
    assert event.channel_results["webhook"].startswith("error: webhook: invalid-url")
    assert event.recipients == ["owner@demo.test", "webhook:invalid-url"]
    assert _event_count(db_session) == 1


def test_dedupe_window_keeps_real_flaps(db_session: Session, settings) -> None:
    windowed = settings.model_copy(update={"alert_dedupe_window_seconds": 60})
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(db_session, settings=windowed, channels=[channel])

    dispatcher.dispatch(ORG_ID, HealthStatus.GREEN, HealthStatus.RED)
    dispatcher.dispatch(ORG_ID, HealthStatus.RED, HealthStatus.GREEN)
    third = dispatcher.dispatch(ORG_ID, HealthStatus.GREEN, HealthStatus.RED)

    assert third is not None
    assert [message.kind for message in channel.messages] == [
        AlertKind.DEGRADED,
        AlertKind.RECOVERED,
        AlertKind.DEGRADED,
    ]
    assert _event_count(db_session) == 3
