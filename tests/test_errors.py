from asc_transfer.errors import APIError
from asc_transfer.errors import ChecksumMissing
from asc_transfer.errors import ConfigurationError
from asc_transfer.errors import PaginationError
from asc_transfer.errors import sanitize_error_body
from asc_transfer.errors import TransferError
from asc_transfer.errors import UploadError

import pytest


class TestErrorHierarchy:
    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)
        assert issubclass(ConfigurationError, TransferError)

    def test_checksum_missing_is_configuration_error(self):
        assert issubclass(ChecksumMissing, ConfigurationError)

    def test_upload_error_message(self):
        cause = OSError("disk gone")
        error = UploadError(4, cause)
        assert str(error) == "upload operation 4: disk gone"
        assert error.cause is cause

    def test_pagination_error_without_page(self):
        error = PaginationError("boom")
        assert str(error) == "boom"
        assert error.page is None


class TestAPIError:
    def test_message_prefers_title_and_detail(self):
        assert str(APIError("CODE", "Title", "Detail")) == "Title: Detail"

    @pytest.mark.parametrize(
        "args, message",
        [
            (("CODE", "Title", ""), "Title"),
            (("CODE", "", "Detail"), "Detail"),
            (("CODE", "", ""), "CODE"),
            (("", "", ""), "API error"),
        ],
    )
    def test_message_fallbacks(self, args, message):
        assert str(APIError(*args)) == message

    def test_control_characters_stripped(self):
        error = APIError("CODE", "Bad\x1b[31m title", "detail\x7f")
        assert "\x1b" not in error.title
        assert error.detail == "detail"

    @pytest.mark.parametrize("body", [b"", b"null", b"[]", b'{"errors": []}', b'{"errors": ["x"]}'])
    def test_unparseable_bodies(self, body):
        error = APIError.from_body(body, 500)
        assert error.code == "UNKNOWN"
        assert error.title == "unknown error"
        assert error.status_code == 500


class TestSanitizeErrorBody:
    def test_truncated(self):
        assert len(sanitize_error_body(b"x" * 1000)) == 200

    def test_control_characters_removed(self):
        assert sanitize_error_body(b"a\x00b\x1bc\nd") == "abc\nd"

    def test_text_and_empty(self):
        assert sanitize_error_body("plain") == "plain"
        assert sanitize_error_body(None) == ""
