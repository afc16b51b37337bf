from __future__ import annotations

import json
import os
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys
from typing import Any

import httpx
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("ENABLE_TRACING", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

from ledgerbridge.api.deps import (
    get_alert_channels,
    get_app_settings,
    get_db_session,
    get_ledger_client_factory,
)
from ledgerbridge.core.config import Settings
from ledgerbridge.main import app
from ledgerbridge.main import app as fastapi_app
from ledgerbridge.models import (
    AccountMapping,
    Base,
    IntegrationToken,
    OrgContact,
    Organization,
)
from ledgerbridge.obs import AuditMiddleware
from ledgerbridge.services.alerts import AlertMessage
from ledgerbridge.services.bucket_map import REQUIRED_BUCKETS
from ledgerbridge.services.errors import AlertChannelError
from ledgerbridge.services.ledger_client import quickbooks_client_factory

ORG_ID = "org-demo"
REALM_ID = "realm-1"


class InMemoryS3Client:
    """Simple in-memory S3 stub used by the audit middleware during tests."""

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, bytes]] = {}

    def head_bucket(self, *, Bucket: str) -> None:
        if Bucket not in self._buckets:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket")

    def create_bucket(self, *, Bucket: str, **_: object) -> None:
        self._buckets.setdefault(Bucket, {})

    def put_object(
        self,
        *,
        Bucket: str,
        Key: str,
        Body: bytes,
        ContentType: str | None = None,
        **_: object,
    ) -> dict[str, str]:
        bucket = self._buckets.setdefault(Bucket, {})
        bucket[Key] = Body.encode("utf-8") if isinstance(Body, str) else Body
        return {"ETag": "in-memory"}

    @property
    def buckets(self) -> dict[str, dict[str, bytes]]:
        return self._buckets


class FakeLedger:
    """In-memory ledger provider served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.entries: dict[str, dict[str, Any]] = {}
        self.accounts: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.fail_post_numbers: set[int] = set()
        self.timeout_post_numbers: set[int] = set()
        self.post_count = 0
        self._next_id = 100

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path.endswith("/journalentry"):
            self.post_count += 1
            if self.post_count in self.fail_post_numbers:
                return httpx.Response(500, text="ledger unavailable")
            if self.post_count in self.timeout_post_numbers:
                raise httpx.ReadTimeout("ledger did not answer", request=request)
            entry = json.loads(request.content)["JournalEntry"]
            entry_id = str(self._next_id)
            self._next_id += 1
            self.entries[entry_id] = {**entry, "Id": entry_id}
            return httpx.Response(200, json={"JournalEntry": self.entries[entry_id]})
        if request.method == "GET" and "/journalentry/" in path:
            entry_id = path.rsplit("/", 1)[-1]
            if entry_id not in self.entries:
                return httpx.Response(404, json={"Fault": {"Error": [{"Message": "Object Not Found"}]}})
            return httpx.Response(200, json={"JournalEntry": self.entries[entry_id]})
        if request.method == "GET" and path.endswith("/query"):
            return httpx.Response(200, json={"QueryResponse": {"Account": self.accounts}})
        return httpx.Response(404)

    @property
    def posted(self) -> list[dict[str, Any]]:
        return list(self.entries.values())


class RecordingChannel:
    """Alert channel collecting messages instead of delivering them."""

    def __init__(self, name: str = "recording", *, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.messages: list[AlertMessage] = []

    def send(self, message: AlertMessage) -> str:
        self.messages.append(message)
        if self.fail:
            raise AlertChannelError(self.name, "transport down")
        return "sent"


DATABASE_URL = "sqlite+pysqlite://"


engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def connect_org(
    session: Session, org_id: str = ORG_ID, *, expires_in: int = 3600, provider: str = "quickbooks"
) -> IntegrationToken:
    token = IntegrationToken(
        org_id=org_id,
        provider=provider,
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        realm_id=REALM_ID,
        company_name="Demo Books",
    )
    session.add(token)
    session.commit()
    return token


def map_buckets(
    session: Session,
    org_id: str = ORG_ID,
    buckets: tuple[str, ...] = REQUIRED_BUCKETS,
    *,
    provider: str = "quickbooks",
) -> None:
    for index, bucket in enumerate(buckets, start=1):
        session.add(
            AccountMapping(
                org_id=org_id,
                provider=provider,
                bucket=bucket,
                external_account_id=str(index),
                name=bucket.replace("_", " ").title(),
            )
        )
    session.commit()


@pytest.fixture(autouse=True)
def audit_s3_client(monkeypatch: pytest.MonkeyPatch) -> Iterator[InMemoryS3Client]:
    client = InMemoryS3Client()

    def _client_factory(*args: object, **kwargs: object) -> InMemoryS3Client:
        return client

    monkeypatch.setattr("ledgerbridge.obs.audit.boto3.client", _client_factory)
    stack = getattr(fastapi_app, "middleware_stack", None)
    middleware = getattr(stack, "app", None)
    while middleware is not None and hasattr(middleware, "app"):
        if isinstance(middleware, AuditMiddleware):
            middleware._s3_client = None
            middleware._bucket_ready = False
        middleware = getattr(middleware, "app", None)
    yield client


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url=DATABASE_URL,
        enable_tracing=False,
        ledger_api_base_url="https://ledger.test",
        app_dashboard_url="https://app.test",
        alert_email_api_key="test-key",
        alert_dedupe_window_seconds=0,
    )


@pytest.fixture()
def db_session() -> Iterator[Session]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()

    session.add(Organization(id=ORG_ID, name="Demo Reseller"))
    session.commit()
    session.add(OrgContact(org_id=ORG_ID, email="owner@demo.test", notify=True))
    session.commit()

    yield session
    session.close()


@pytest.fixture()
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def ledger_http_client(fake_ledger: FakeLedger) -> Iterator[httpx.Client]:
    with httpx.Client(transport=httpx.MockTransport(fake_ledger.handler)) as http_client:
        yield http_client


@pytest.fixture()
def client_factory(settings: Settings, ledger_http_client: httpx.Client):
    return quickbooks_client_factory(settings, http_client=ledger_http_client)


@pytest.fixture()
def alert_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture()
def client(
    db_session: Session,
    audit_s3_client: InMemoryS3Client,
    settings: Settings,
    client_factory,
    alert_channel: RecordingChannel,
) -> Iterator[TestClient]:
    def override_get_db() -> Iterator[Session]:
        try:
            yield db_session
        finally:
            db_session.rollback()

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_ledger_client_factory] = lambda: client_factory
    app.dependency_overrides[get_alert_channels] = lambda: [alert_channel]

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
