import pytest

from src.directory.errors import ValidationError
from src.directory.models import StoreInput, StoreRecord, normalize_phone_number


class TestNormalizePhoneNumber:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("5551234", 5551234),
            (" 555-1234 ", 5551234),
            ("(555) 123 4567", 5551234567),
            ("+1 555.123.4567", 15551234567),
            (5551234, 5551234),
            ("5551234.0", 5551234),
            ("+15551234567.00", 15551234567),
            ("555.1234", 5551234),
        ],
    )
    def test_accepts_common_formats(self, raw, expected):
        assert normalize_phone_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_is_required_error(self, raw):
        with pytest.raises(ValidationError) as exc:
            normalize_phone_number(raw)
        assert exc.value.message == "Phone number is required"

    @pytest.mark.parametrize("raw", ["555-CALL", "ext 12", "12#34", "+", True])
    def test_rejects_non_numeric(self, raw):
        with pytest.raises(ValidationError):
            normalize_phone_number(raw)


def test_store_input_payload_uses_integer_phone():
    payload = StoreInput("555-0001", location="Main", store_name="Acme").to_payload()
    assert payload == {"phone_number": 5550001, "store_name": "Acme", "location": "Main"}


class TestStoreRecordFromRow:

    def test_fills_missing_optionals(self):
        record = StoreRecord.from_row({"id": 7, "created_at": "2024-01-01T00:00:00+00:00", "phone_number": 5551234,
                                       "store_name": None, "last_called": None})
        assert record.id == "7"
        assert record.store_name == ""
        assert record.location == ""
        assert record.last_called == ""
        assert record.is_pending

    def test_string_phone_is_coerced(self):
        record = StoreRecord.from_row({"id": "a", "phone_number": "5551234", "last_called": "2024-03-01"})
        assert record.phone_number == 5551234
        assert not record.is_pending

    def test_missing_id_raises(self):
        with pytest.raises(ValueError):
            StoreRecord.from_row({"phone_number": 1})

    @pytest.mark.parametrize("phone", [None, "", "n/a"])
    def test_unusable_phone_raises_instead_of_defaulting(self, phone):
        with pytest.raises(ValueError):
            StoreRecord.from_row({"id": "a", "phone_number": phone})

    def test_transcript_is_ignored_for_equality(self):
        a = StoreRecord.from_row({"id": "a", "phone_number": 1, "transcript": "hello"})
        b = StoreRecord(id="a", created_at="", phone_number=1, transcript="other")
        assert a == b
        assert a.to_dict()["transcript"] == ""
