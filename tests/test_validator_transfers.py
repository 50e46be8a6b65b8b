import datetime as dt

import pytest

from finance_tracker.currency import format_currency, get_currency_info
from finance_tracker.transfers import synthesize_transfer
from finance_tracker.validator import LegacyFileError, validate_legacy_file

VALID_HEADER = b"SQLite format 3\x00" + b"\x00" * 84


def test_valid_legacy_file_passes():
    validate_legacy_file("backup.sqlite", VALID_HEADER)
    validate_legacy_file("BACKUP.DB", VALID_HEADER)


@pytest.mark.parametrize(
    "filename, data, message",
    [
        ("backup.txt", VALID_HEADER, "Invalid file format"),
        ("backup", VALID_HEADER, "Invalid file format"),
        ("tiny.db", b"SQLite", "too small"),
        ("fake.sqlite", b"PK\x03\x04" + b"\x00" * 60, "does not appear to be a valid SQLite database"),
    ],
)
def test_invalid_legacy_files_are_rejected(filename, data, message):
    with pytest.raises(LegacyFileError, match=message):
        validate_legacy_file(filename, data)


def test_legacy_file_error_is_a_value_error():
    assert issubclass(LegacyFileError, ValueError)


def test_transfer_pair_mirrors_legs():
    when = dt.datetime(2024, 5, 1, 8, 0, tzinfo=dt.timezone.utc)
    pair = synthesize_transfer(
        "acc_a", "acc_b", "cat_t", 500, when, content="rent", source_name="Checking", destination_name="Savings"
    )
    out, back = pair.legs()

    assert (out.account_id, out.type, out.to_account_id) == ("acc_a", "expense", "acc_b")
    assert (back.account_id, back.type, back.to_account_id) == ("acc_b", "income", "acc_a")
    assert out.amount == back.amount == 500
    assert out.date == back.date == when
    assert out.category_id == back.category_id == "cat_t"
    assert out.description == "Transfer To Savings: rent"
    assert back.description == "Transfer From Checking: rent"


def test_transfer_descriptions_fall_back_to_ids():
    pair = synthesize_transfer("acc_a", "acc_b", "cat_t", 1, dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc))
    assert pair.main.description == "Transfer To acc_b: "
    assert pair.reverse.description == "Transfer From acc_a: "


def test_currency_lookup_and_format():
    assert get_currency_info("usd").symbol == "$"
    assert get_currency_info("XYZ").code == "PHP"
    assert get_currency_info(None).code == "PHP"
    assert format_currency(-1234.5, "EUR") == "€1234.50"
