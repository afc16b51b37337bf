from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ledgerbridge.services.errors import ValidationError
from ledgerbridge.services.ingest import (
    SALE_ALIASES,
    idempotency_key,
    norm_bool,
    normalize_row,
    parse_occurrence,
)


def test_normalize_row_uses_first_non_empty_alias() -> None:
    row = {"Marketplace": " eBay ", "orderId": "", "Order ID": "A-1", "Sale Price": "$10.00"}
    assert normalize_row(row, SALE_ALIASES) == {
        "marketplace": "eBay",
        "marketplaceOrderId": "A-1",
        "salePrice": "$10.00",
    }


@pytest.mark.parametrize(
    "value",
    ["2024-03-05", "03/05/2024", "2024/03/05", "05-Mar-2024", "2024-03-05T00:00:00Z"],
)
def test_parse_occurrence_known_formats(value: str) -> None:
    assert parse_occurrence(value) == datetime(2024, 3, 5, tzinfo=timezone.utc)


def test_parse_occurrence_converts_offsets_to_utc() -> None:
    assert parse_occurrence("2024-03-05T20:00:00-05:00") == datetime(2024, 3, 6, 1, tzinfo=timezone.utc)


def test_parse_occurrence_rejects_garbage() -> None:
    with pytest.raises(ValidationError, match="Unrecognized date"):
        parse_occurrence("yesterday-ish")


@pytest.mark.parametrize(("value", "expected"), [("Y", True), ("yes", True), (1, True), ("no", False), (None, False)])
def test_norm_bool(value, expected: bool) -> None:
    assert norm_bool(value) is expected


def test_idempotency_key_is_a_sha256_of_the_parts() -> None:
    key = idempotency_key(["csv", "ebay", "A-1", "2024-03-05T00:00:00+00:00", 1000])
    assert len(key) == 64
    assert key == idempotency_key(["csv", "ebay", "A-1", "2024-03-05T00:00:00+00:00", 1000])
    assert key != idempotency_key(["csv", "ebay", "A-2", "2024-03-05T00:00:00+00:00", 1000])
