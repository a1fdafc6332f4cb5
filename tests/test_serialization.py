"""Tests for date, boolean, backup and checksum encoding."""

import json
import logging

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from controlmoney.services.storage.serialization import (
    bool_to_int,
    checksum,
    date_to_string,
    decode_backup,
    decode_record,
    encode_backup,
    encode_record,
    int_to_bool,
    string_to_date,
    table_fingerprint,
    to_neutral,
)


class TestDateToString:
    """Tests for defensive date serialization."""
    
    def test_datetime(self):
        """Test datetime to ISO."""
        assert date_to_string(datetime(2024, 1, 15, 9, 30)) == "2024-01-15T09:30:00"
    
    def test_date(self):
        """Test plain date becomes midnight."""
        assert date_to_string(date(2024, 1, 15)) == "2024-01-15T00:00:00"
    
    def test_iso_string(self):
        """Test ISO string passes through normalized."""
        assert date_to_string("2024-01-15") == "2024-01-15T00:00:00"
    
    def test_epoch_seconds(self):
        """Test numeric timestamps."""
        assert date_to_string(0) == datetime.fromtimestamp(0).isoformat()
    
    def test_not_a_date_returns_now_and_warns(self, caplog):
        """Test that a non-date yields the current time and a warning."""
        before = datetime.now()
        with caplog.at_level(logging.WARNING):
            result = date_to_string("not-a-date")
        parsed = datetime.fromisoformat(result)
        assert before - timedelta(seconds=1) <= parsed <= datetime.now() + timedelta(seconds=1)
        assert "date_serialization_failed" in caplog.text
    
    @pytest.mark.parametrize("value", [None, object(), 10 ** 20, [2024, 1, 1]])
    def test_never_raises(self, value):
        """Test other bad values fall back without raising."""
        datetime.fromisoformat(date_to_string(value))


class TestRowValues:
    """Tests for row-level conversions."""
    
    def test_string_to_date(self):
        """Test parsing and empty values."""
        assert string_to_date("2024-01-15T09:30:00") == datetime(2024, 1, 15, 9, 30)
        assert string_to_date(None) is None
        assert string_to_date("") is None
        assert string_to_date("garbage") is None
    
    def test_booleans(self):
        """Test 0/1 booleans."""
        assert bool_to_int(True) == 1
        assert bool_to_int(False) == 0
        assert int_to_bool(1) is True
        assert int_to_bool(0) is False
        assert int_to_bool(None) is False


class TestBackupFormat:
    """Tests for the backup JSON format."""
    
    def test_dates_are_tagged(self):
        """Test the {"__type": "Date"} encoding."""
        text = encode_backup({"balance": [{"id": 1, "date": datetime(2024, 1, 1)}]})
        raw = json.loads(text)
        assert raw["balance"][0]["date"] == {"__type": "Date", "value": "2024-01-01T00:00:00"}
    
    def test_nested_dates_round_trip(self):
        """Test that dates nested in lists are restored."""
        data = {
            "expenses": [{
                "id": 3,
                "amount": Decimal("12.50"),
                "payment_history": [{"date": datetime(2024, 2, 15), "is_paid": True}],
            }],
        }
        restored = decode_backup(encode_backup(data))
        record = restored["expenses"][0]
        assert record["payment_history"][0]["date"] == datetime(2024, 2, 15)
        assert Decimal(record["amount"]) == Decimal("12.50")
    
    def test_rejects_non_object(self):
        """Test that a JSON array is not a backup."""
        with pytest.raises(ValueError):
            decode_backup("[1, 2]")


class TestRecordFormat:
    """Tests for the local store's record encoding."""
    
    def test_nested_types_survive(self):
        """Test that Decimals and dates inside payment history come back typed."""
        record = {
            "amount": Decimal("99.90"),
            "payment_history": [
                {"date": datetime(2024, 5, 1), "is_paid": True, "amount": Decimal("0")},
            ],
            "duration": None,
        }
        assert decode_record(encode_record(record)) == record
    
    def test_backup_keeps_plain_decimal_strings(self):
        """Test that only the record format tags Decimals."""
        assert json.loads(encode_backup({"balance": [{"amount": Decimal("1.5")}]})) == {
            "balance": [{"amount": "1.5"}],
        }
    
    def test_rejects_non_object(self):
        """Test that a stored value must be a JSON object."""
        with pytest.raises(ValueError):
            decode_record("[1, 2]")


class TestChecksum:
    """Tests for backend-neutral fingerprints."""
    
    def test_neutral_decimals(self):
        """Test that equal amounts encode equally."""
        assert to_neutral(Decimal("100.50")) == to_neutral(Decimal("100.5"))
        assert to_neutral(Decimal("100")) == "100"
    
    def test_fingerprint_uses_first_five(self):
        """Test that only the first five records are sampled."""
        records = [{"id": i} for i in range(10)]
        changed = records[:5] + [{"id": 99}] * 5
        assert table_fingerprint("t", records) == table_fingerprint("t", changed)
        assert table_fingerprint("t", records) != table_fingerprint("t", records[:9])
    
    def test_checksum_is_stable(self):
        """Test SHA-256 over parts."""
        assert checksum(["a", "b"]) == checksum(["a", "b"])
        assert checksum(["a", "b"]) != checksum(["b", "a"])
        assert len(checksum([])) == 64


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
