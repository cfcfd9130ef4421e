"""Amount and timestamp codecs at the persistence boundary."""

from datetime import datetime, timezone

import pytest

from baskt_querier.codec import decode_amount, decode_optional_amount, encode_amount, ensure_utc
from baskt_querier.records import OrderRecord


def test_decode_amount_accepts_strings_ints_and_blanks():
    assert decode_amount("123456789012345678901234567890") == 123456789012345678901234567890
    assert decode_amount(42) == 42
    assert decode_amount("") == 0
    assert decode_amount(None) == 0


def test_decode_amount_rejects_garbage():
    with pytest.raises(ValueError):
        decode_amount("not-a-number")
    with pytest.raises(ValueError):
        decode_amount(True)


def test_optional_amount_keeps_none():
    assert decode_optional_amount(None) is None
    assert decode_optional_amount("") is None
    assert decode_optional_amount("7") == 7


def test_big_amounts_serialize_as_strings():
    order = OrderRecord(order_pda="pda", size=10**30, collateral="5")
    dumped = order.model_dump(mode="json")
    assert dumped["size"] == str(10**30)
    assert dumped["collateral"] == "5"
    assert dumped["usdc_size"] is None
    assert encode_amount(None) is None


def test_ensure_utc_tags_naive_values():
    naive = datetime(2025, 1, 1, 0, 0)
    assert ensure_utc(naive).tzinfo is timezone.utc
    assert ensure_utc(None) is None
