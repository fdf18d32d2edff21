"""Tests for invoice number allocation."""

from datetime import datetime, timezone

import pytest

from core.services.invoice_numbers import (
    SEQUENCE_KEY, InvoiceNumberGenerator, format_invoice_number,
)

OCT_2024 = datetime(2024, 10, 15, 9, 0, tzinfo=timezone.utc)


class CountingRepository:
    def __init__(self, count=0):
        self.invoices = count

    def count(self):
        return self.invoices


def test_format():
    assert format_invoice_number(42, OCT_2024) == "INV2410000042"


def test_format_wide_sequence():
    assert format_invoice_number(1234567, OCT_2024) == "INV24101234567"


def test_counter_seeded_from_existing_invoices(valkey):
    numbers = InvoiceNumberGenerator(valkey, CountingRepository(41))

    assert numbers.next_number(as_of=OCT_2024) == "INV2410000042"
    assert numbers.next_number(as_of=OCT_2024) == "INV2410000043"
    assert valkey.values[SEQUENCE_KEY] == 43


def test_seed_does_not_reset_counter(valkey):
    valkey.values[SEQUENCE_KEY] = 100
    numbers = InvoiceNumberGenerator(valkey, CountingRepository(3))

    assert numbers.next_number(as_of=OCT_2024) == "INV2410000101"


def test_collisions_do_not_skip_counter(valkey):
    numbers = InvoiceNumberGenerator(valkey, CountingRepository(0))

    assert numbers.next_number(collisions=3, as_of=OCT_2024) == "INV2410000001"


def test_fallback_to_count_when_valkey_down(valkey, caplog):
    valkey.down = True
    numbers = InvoiceNumberGenerator(valkey, CountingRepository(7))

    assert numbers.next_number(as_of=OCT_2024) == "INV2410000008"
    assert "falling back to count" in caplog.text


@pytest.mark.parametrize("collisions,expected", [(0, "INV2410000008"), (2, "INV2410000010")])
def test_fallback_skips_past_collisions(collisions, expected):
    numbers = InvoiceNumberGenerator(None, CountingRepository(7))

    assert numbers.next_number(collisions=collisions, as_of=OCT_2024) == expected
