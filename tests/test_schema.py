"""
Tests for request validation and archive id parsing.
"""

import pytest

from archivesync.errors import MalformedRequest
from archivesync.schema import (
    parse_archive_period,
    parse_download_request,
    validate_download_request,
)


class TestValidateDownloadRequest:
    """Test the list-of-errors validator."""

    def test_valid_request(self, valid_download_request):
        assert validate_download_request(valid_download_request) == []

    def test_missing_required_field(self):
        errors = validate_download_request({"username": "hikaru"})
        assert any("platform" in err.lower() for err in errors)

    def test_empty_string_field(self):
        errors = validate_download_request({"username": "   ", "platform": "CHESS_DOT_COM"})
        assert len(errors) == 1
        assert "username" in errors[0]

    def test_non_string_field(self):
        errors = validate_download_request({"username": 42, "platform": "CHESS_DOT_COM"})
        assert len(errors) == 1

    def test_unsupported_platform(self):
        errors = validate_download_request({"username": "hikaru", "platform": "LICHESS"})
        assert any("Unsupported platform" in err for err in errors)

    @pytest.mark.parametrize("username", ["../../admin", "hikaru/games/archives"])
    def test_username_with_path_separator(self, username):
        errors = validate_download_request({"username": username, "platform": "CHESS_DOT_COM"})
        assert errors == ["Field 'username' must not contain '/'"]


class TestParseDownloadRequest:
    """Test parsing a raw request body."""

    def test_valid_body(self):
        request = parse_download_request('{"username": " hikaru ", "platform": "CHESS_DOT_COM"}')
        assert request.username == "hikaru"
        assert request.platform == "CHESS_DOT_COM"

    @pytest.mark.parametrize("body", ["", "{", "[]", "\"text\"", "null"])
    def test_unparsable_bodies(self, body):
        with pytest.raises(MalformedRequest):
            parse_download_request(body)

    def test_invalid_fields(self):
        with pytest.raises(MalformedRequest, match="username"):
            parse_download_request('{"platform": "CHESS_DOT_COM"}')

    def test_deeply_nested_body(self):
        body = "[" * 200000 + "]" * 200000
        with pytest.raises(MalformedRequest):
            parse_download_request(body)


class TestParseArchivePeriod:
    """Test reading YYYY/MM from archive ids."""

    def test_full_url(self):
        assert parse_archive_period("https://api.chess.com/pub/player/hikaru/games/2023/07") == (2023, 7)

    def test_short_id(self):
        assert parse_archive_period("2024/01") == (2024, 1)

    def test_trailing_slash(self):
        assert parse_archive_period("https://api.chess.com/pub/player/hikaru/games/2023/12/") == (2023, 12)

    @pytest.mark.parametrize(
        "archive_id",
        ["2024", "games/2024/xx", "2024/13", "2024/00", "", "games/9999/12", "games/0/05", "games/-1/03"],
    )
    def test_malformed(self, archive_id):
        with pytest.raises(ValueError):
            parse_archive_period(archive_id)

    def test_year_bounds(self):
        assert parse_archive_period("games/0001/01") == (1, 1)
        assert parse_archive_period("games/9998/12") == (9998, 12)
