"""
Tests for request validation and field normalization.

The validator is a pure function, so these tests need no database.
"""

import pytest

from smssink.errors import InvalidParameter, Unauthorized
from smssink.schemas import MessageRequest, PhoneNumber, normalize_to, phone_number_of
from smssink.utils import extract_token, format_timestamp, storage_timestamp
from smssink.validator import validate_message_request


API_KEY = "secret-key"


def make_request(**overrides) -> MessageRequest:
    body = {"from": "+1", "to": "+2", "text": "hi", "messaging_profile_id": "p1"}
    body.update(overrides)
    return MessageRequest.model_validate(body)


class TestNormalization:

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("+2", "+2"),
            (["+2"], "+2"),
            (["+2", "+3"], "+2"),
            ([], ""),
            (None, ""),
            ("", ""),
            ([PhoneNumber(phone_number="+4")], "+4"),
        ],
    )
    def test_normalize_to(self, value, expected):
        assert normalize_to(value) == expected

    def test_phone_number_of(self):
        assert phone_number_of(PhoneNumber(phone_number="+9")) == "+9"
        assert phone_number_of("+9") == "+9"
        assert phone_number_of(None) == ""

    def test_request_to_shapes_agree(self):
        assert make_request(to="+2").recipient() == make_request(to=["+2"]).recipient()

    @pytest.mark.parametrize(
        "header,token",
        [
            ("Bearer abc", "abc"),
            ("Basic abc", "abc"),
            ("abc", "abc"),
            ("Bearer ", "Bearer "),
        ],
    )
    def test_extract_token(self, header, token):
        assert extract_token(header) == token

    def test_timestamp_formats(self):
        from datetime import datetime, timezone

        dt = datetime(2025, 1, 15, 10, 0, 0, 500123, tzinfo=timezone.utc)
        assert format_timestamp(dt) == "2025-01-15T10:00:00.500Z"
        assert storage_timestamp(dt) == "2025-01-15T10:00:00.500123Z"


class TestValidateMessageRequest:

    def test_valid_request(self):
        message = validate_message_request(f"Bearer {API_KEY}", make_request(), API_KEY)

        assert message.sender == "+1"
        assert message.recipient == "+2"
        assert message.media_urls == []
        assert message.message_type == "SMS"
        assert message.webhook_url == ""

    def test_media_makes_mms(self):
        message = validate_message_request(API_KEY, make_request(media_urls=["http://x/i.png"]), API_KEY)

        assert message.message_type == "MMS"

    def test_missing_header(self):
        with pytest.raises(Unauthorized) as exc:
            validate_message_request(None, make_request(), API_KEY)

        assert exc.value.status_code == 401
        assert exc.value.code == "10001"
        assert exc.value.detail == "Authorization header is required."

    def test_wrong_key(self):
        with pytest.raises(Unauthorized) as exc:
            validate_message_request("Bearer other", make_request(), API_KEY)

        assert exc.value.detail == "Invalid API key."

    def test_auth_checked_first(self):
        with pytest.raises(Unauthorized):
            validate_message_request("", MessageRequest.model_validate({}), API_KEY)

    @pytest.mark.parametrize(
        "overrides,detail",
        [
            ({"from": None}, "The 'from' parameter is required."),
            ({"to": []}, "The 'to' parameter is required."),
            ({"messaging_profile_id": ""}, "The 'messaging_profile_id' parameter is required."),
            ({"text": "", "media_urls": []}, "Either 'text' or 'media_urls' parameter is required."),
        ],
    )
    def test_missing_fields(self, overrides, detail):
        with pytest.raises(InvalidParameter) as exc:
            validate_message_request(API_KEY, make_request(**overrides), API_KEY)

        assert exc.value.status_code == 422
        assert exc.value.code == "10005"
        assert exc.value.detail == detail

    def test_first_failure_wins(self):
        request = make_request(**{"from": "", "to": "", "messaging_profile_id": "", "text": ""})

        with pytest.raises(InvalidParameter) as exc:
            validate_message_request(API_KEY, request, API_KEY)

        assert exc.value.detail == "The 'from' parameter is required."

    def test_error_envelope(self):
        error = InvalidParameter("The 'to' parameter is required.")

        assert error.to_response().model_dump() == {
            "errors": [{"code": "10005", "title": "Invalid parameter", "detail": "The 'to' parameter is required."}]
        }
