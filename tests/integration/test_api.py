from __future__ import annotations

import json

from fastapi.testclient import TestClient
from sqlalchemy import delete
from sqlalchemy.orm import Session

from conftest import ORG_ID, FakeLedger, InMemoryS3Client, RecordingChannel, connect_org, map_buckets
from ledgerbridge.models import IntegrationToken

SALE_ROW = {
    "marketplace": "ebay",
    "orderId": "A-100",
    "soldAt": "2024-03-05",
    "salePrice": "100.00",
    "shippingCharged": "5.00",
    "shippingCost": "3.00",
    "platformFees": "8.00",
    "purchasePrice": "40.00",
}


def test_health_endpoints(client: TestClient) -> None:
    assert client.get("/api/healthz").json()["status"] == "ok"
    assert client.get("/api/readyz").json()["status"] == "ready"


def test_ingest_sales_twice(client: TestClient) -> None:
    payload = {"orgId": ORG_ID, "sourceLabel": "csv", "rows": [SALE_ROW, {"marketplace": "ebay"}]}

    first = client.post("/api/ingest/sales", json=payload)
    second = client.post("/api/ingest/sales", json=payload)

    assert first.status_code == 200
    body = first.json()
    assert body["insertedCount"] == 1
    assert body["errors"][0]["row"] == 1
    assert second.json()["insertedCount"] == 0
    assert second.json()["duplicates"][0]["idempotencyKey"]


def test_ingest_unknown_org_is_404(client: TestClient) -> None:
    response = client.post("/api/ingest/expenses", json={"orgId": "nope", "rows": []})
    assert response.status_code == 404


def test_mappings_round_trip(client: TestClient) -> None:
    saved = client.put(
        "/api/mappings",
        json={"orgId": ORG_ID, "bucket": "revenue", "externalAccountId": "79", "name": "Sales"},
    )
    updated = client.put(
        "/api/mappings",
        json={"orgId": ORG_ID, "bucket": "revenue", "externalAccountId": "80"},
    )
    listing = client.get("/api/mappings", params={"orgId": ORG_ID}).json()

    assert saved.status_code == 200
    assert saved.json()["externalAccountId"] == "79"
    assert updated.json()["id"] == saved.json()["id"]
    assert [m["externalAccountId"] for m in listing["mappings"]] == ["80"]
    assert "revenue" not in listing["missing"]
    assert "clearing" in listing["missing"]


def test_unknown_bucket_is_422(client: TestClient) -> None:
    response = client.put(
        "/api/mappings", json={"orgId": ORG_ID, "bucket": "petty_cash", "externalAccountId": "1"}
    )
    assert response.status_code == 422


def test_account_refresh_populates_cache(client: TestClient, db_session: Session, fake_ledger: FakeLedger) -> None:
    fake_ledger.accounts = [
        {"Id": "1", "Name": "Sales", "AccountType": "Income", "Active": True},
        {"Id": "2", "Name": "Checking", "AccountType": "Bank", "Active": True},
    ]
    assert client.post("/api/accounts/refresh", json={"orgId": ORG_ID}).status_code == 409

    connect_org(db_session)
    response = client.post("/api/accounts/refresh", json={"orgId": ORG_ID})

    assert response.status_code == 200
    assert response.json() == {"count": 2}


def test_journal_preview_and_commit(client: TestClient, db_session: Session, fake_ledger: FakeLedger) -> None:
    client.post("/api/ingest/sales", json={"orgId": ORG_ID, "sourceLabel": "csv", "rows": [SALE_ROW]})
    period = {"orgId": ORG_ID, "periodStart": "2024-03-01", "periodEnd": "2024-03-31"}

    preview = client.post("/api/journals/preview", json=period)
    blocked = client.post("/api/journals/commit", json=period)

    assert preview.status_code == 200
    journal = preview.json()["journals"][0]
    assert journal["totalDebits"] == journal["totalCredits"] == 10500
    assert blocked.status_code == 409

    connect_org(db_session)
    map_buckets(db_session)
    committed = client.post("/api/journals/commit", json=period)

    assert committed.status_code == 200
    assert committed.json()["results"][0]["status"] == "committed"
    assert fake_ledger.post_count == 1


def test_test_reverse_success(client: TestClient, db_session: Session) -> None:
    connect_org(db_session)
    map_buckets(db_session)

    response = client.post("/api/journals/test-reverse", json={"orgId": ORG_ID, "sameDayReverse": True})

    assert response.status_code == 200
    body = response.json()
    assert body["forwardId"] and body["reverseId"]
    assert body["date"] == body["reverseDate"]


def test_test_reverse_partial_is_502_with_forward_id(
    client: TestClient, db_session: Session, fake_ledger: FakeLedger
) -> None:
    connect_org(db_session)
    map_buckets(db_session)
    fake_ledger.fail_post_numbers = {2}

    response = client.post("/api/journals/test-reverse", json={"orgId": ORG_ID, "sameDayReverse": False})

    assert response.status_code == 502
    body = response.json()
    assert body["forwardId"] in fake_ledger.entries
    assert body["reverseId"] is None
    assert body["error"]


def test_verify_unknown_id(client: TestClient, db_session: Session) -> None:
    connect_org(db_session)

    response = client.post("/api/journals/verify", json={"orgId": ORG_ID, "ids": ["missing"]})

    assert response.status_code == 200
    assert response.json()["results"][0]["found"] is False


def test_diagnostics_save_and_alert(
    client: TestClient, db_session: Session, alert_channel: RecordingChannel
) -> None:
    connect_org(db_session)
    map_buckets(db_session)

    first = client.post("/api/diagnostics", json={"orgId": ORG_ID, "save": True})
    assert first.status_code == 200
    assert first.json()["overall"] == "green"
    assert first.json()["health"]["connected"] is True
    assert first.json()["health"]["expiresInSec"] > 0

    db_session.execute(delete(IntegrationToken))
    db_session.commit()
    second = client.post("/api/diagnostics", json={"orgId": ORG_ID, "save": True}).json()

    assert second["overall"] == "red"
    assert second["health"]["connected"] is False
    assert "clearing" in second["missing"]
    assert [message.title for message in alert_channel.messages] == ["QuickBooks status changed to RED"]


def test_profit_summary(client: TestClient) -> None:
    client.post("/api/ingest/sales", json={"orgId": ORG_ID, "sourceLabel": "csv", "rows": [SALE_ROW]})

    response = client.get(
        "/api/profit", params={"orgId": ORG_ID, "periodStart": "2024-03-01", "periodEnd": "2024-03-31"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["grossProfit"] == 5400
    assert body["netProfitDisplay"] == "$54.00"


def test_requests_are_audited_to_s3(client: TestClient, audit_s3_client: InMemoryS3Client) -> None:
    client.post("/api/ingest/sales", json={"orgId": ORG_ID, "sourceLabel": "csv", "rows": []})

    objects = audit_s3_client.buckets["ledgerbridge-audit-logs"]
    records = [json.loads(line) for blob in objects.values() for line in blob.decode().splitlines()]
    assert any(record["org_id"] == ORG_ID and record["path"] == "/api/ingest/sales" for record in records)


def test_audit_stores_one_object_per_request_under_its_org(
    client: TestClient, audit_s3_client: InMemoryS3Client
) -> None:
    client.post(
        "/api/ingest/sales",
        json={"orgId": ORG_ID, "sourceLabel": "csv", "rows": [SALE_ROW, SALE_ROW]},
        headers={"X-Request-ID": "req-42"},
    )
    client.get("/api/healthz")

    objects = audit_s3_client.buckets["ledgerbridge-audit-logs"]
    assert len(objects) == 1
    key, blob = next(iter(objects.items()))
    assert key.startswith("audit/records/")
    assert key.endswith(f"/{ORG_ID}/req-42.json")
    record = json.loads(blob)
    assert record["body"] == {"orgId": ORG_ID, "sourceLabel": "csv", "rowCount": 2}
