from datetime import datetime, timedelta, timezone

import pytest

from todo_api.errors import BadRequestError
from todo_api.schemas import parse_fields, sanitize_payload


class TestSanitizePayload:
    def test_keeps_only_whitelisted_keys(self):
        body = {"title": "t", "tags": ["a"], "_id": "x", "createdAt": "now", "admin": True}
        assert sanitize_payload(body) == {"title": "t", "tags": ["a"]}

    def test_keeps_explicit_nulls(self):
        assert sanitize_payload({"description": None}) == {"description": None}

    def test_none_body_is_empty(self):
        assert sanitize_payload(None) == {}

    @pytest.mark.parametrize("body", [[1, 2], "title", 3])
    def test_non_object_rejected(self, body):
        with pytest.raises(BadRequestError):
            sanitize_payload(body)


class TestParseFields:
    def test_tracks_supplied_fields(self):
        fields = parse_fields({"title": " a ", "completed": True, "junk": 1})
        assert fields.model_fields_set == {"title", "completed"}
        assert fields.to_document() == {"title": "a", "completed": True}

    def test_enums_stored_as_plain_values(self):
        doc = parse_fields({"status": "completed", "priority": "low"}).to_document()
        assert doc == {"status": "completed", "priority": "low"}
        assert type(doc["status"]) is str

    def test_due_date_forms(self):
        utc = timezone.utc
        assert parse_fields({"dueDate": "2025-01-31"}).due_date == datetime(2025, 1, 31, tzinfo=utc)
        assert parse_fields({"dueDate": "2025-01-31T13:45:00"}).due_date == datetime(2025, 1, 31, 13, 45, tzinfo=utc)
        assert parse_fields({"dueDate": "2025-01-31T13:45:00Z"}).due_date.utcoffset() == timedelta(0)

    def test_due_date_normalized_to_utc_milliseconds(self):
        due = parse_fields({"dueDate": "2025-01-31T15:45:00.987654+02:00"}).due_date
        assert due == datetime(2025, 1, 31, 13, 45, 0, 987000, tzinfo=timezone.utc)
        assert due.utcoffset() == timedelta(0)

    def test_title_required_when_asked(self):
        for body in [{}, {"title": None}, {"title": ""}, {"title": "  \t"}]:
            with pytest.raises(BadRequestError) as exc:
                parse_fields(body, require_title=True)
            assert exc.value.message == "title is required"

    def test_partial_allows_missing_title(self):
        fields = parse_fields({"completed": False})
        assert fields.title is None
        assert "title" not in fields.model_fields_set

    def test_description_limit(self):
        assert parse_fields({"description": "d" * 2000}).description == "d" * 2000
        with pytest.raises(BadRequestError) as exc:
            parse_fields({"description": "d" * 2001})
        assert exc.value.errors[0]["field"] == "description"

    def test_null_only_allowed_for_optional_fields(self):
        assert parse_fields({"description": None, "dueDate": None}).to_document() == {
            "description": None,
            "dueDate": None,
        }
        with pytest.raises(BadRequestError) as exc:
            parse_fields({"completed": None, "tags": None})
        assert {e["field"] for e in exc.value.errors} == {"completed", "tags"}

    def test_counts_non_negative(self):
        assert parse_fields({"publicationsCount": 0}).publications_count == 0
        with pytest.raises(BadRequestError) as exc:
            parse_fields({"followingCount": -1})
        assert exc.value.status == "bad_request"
        assert exc.value.errors[0]["field"] == "followingCount"

    def test_tags_must_be_strings(self):
        with pytest.raises(BadRequestError):
            parse_fields({"tags": "not-a-list"})
