"""
Tests for the remote catalog client.
"""

import pytest
from unittest.mock import MagicMock, patch

import requests

from archivesync.catalog import RemoteCatalogClient
from archivesync.errors import ProfileNotFound, UpstreamUnavailable


def _response(status_code: int, payload=None, text: str = ""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


@pytest.fixture
def client(logger):
    return RemoteCatalogClient("https://api.chess.com/", logger, timeout=5)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("archivesync.retry.time.sleep") as sleep:
        yield sleep


class TestFetchProfile:
    """Test identity lookup."""

    def test_profile_found(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(200, {"player_id": 15448422, "username": "hikaru"})
            profile = client.fetch_profile("hikaru", ctx)

        assert profile.remote_user_id == "15448422"
        assert profile.username == "hikaru"
        assert get.call_args[0][0] == "https://api.chess.com/pub/player/hikaru"
        assert get.call_args[1]["timeout"] == 5

    def test_username_stays_one_path_segment(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(404)
            with pytest.raises(ProfileNotFound):
                client.fetch_profile("../../admin", ctx)
            get.return_value = _response(200, {"archives": []})
            client.fetch_archives("x/games/archives", ctx)

        urls = [call[0][0] for call in get.call_args_list]
        assert urls == [
            "https://api.chess.com/pub/player/..%2F..%2Fadmin",
            "https://api.chess.com/pub/player/x%2Fgames%2Farchives/games/archives",
        ]

    def test_not_found(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(404, {"message": "not found"})
            with pytest.raises(ProfileNotFound) as excinfo:
                client.fetch_profile("nobody", ctx)

        assert excinfo.value.kind == "PROFILE_NOT_FOUND"
        assert get.call_count == 1

    def test_unexpected_status(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(410)
            with pytest.raises(UpstreamUnavailable):
                client.fetch_profile("hikaru", ctx)

    def test_retryable_status_is_retried_then_surfaced(self, client, ctx, no_sleep):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(503)
            with pytest.raises(UpstreamUnavailable, match="503"):
                client.fetch_profile("hikaru", ctx)

        assert get.call_count == 4
        assert no_sleep.call_count == 3

    def test_recovers_after_timeout(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.side_effect = [
                requests.exceptions.Timeout("slow"),
                _response(200, {"player_id": 1}),
            ]
            profile = client.fetch_profile("hikaru", ctx)

        assert profile.remote_user_id == "1"

    def test_missing_player_id(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(200, {"username": "hikaru"})
            with pytest.raises(UpstreamUnavailable):
                client.fetch_profile("hikaru", ctx)

    def test_body_is_not_json(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(200, ValueError("no json"))
            with pytest.raises(UpstreamUnavailable):
                client.fetch_profile("hikaru", ctx)


class TestFetchArchives:
    """Test archive list lookup."""

    def test_archives_in_source_order(self, client, ctx, logger):
        archives = [
            "https://api.chess.com/pub/player/hikaru/games/2023/12",
            "https://api.chess.com/pub/player/hikaru/games/2024/01",
        ]
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(200, {"archives": archives})
            result = client.fetch_archives("hikaru", ctx)

        assert result == archives
        assert get.call_args[0][0] == "https://api.chess.com/pub/player/hikaru/games/archives"
        assert logger.metrics["catalog_calls"] == 1

    def test_non_success_status(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(404)
            with pytest.raises(UpstreamUnavailable):
                client.fetch_archives("hikaru", ctx)

    def test_malformed_list(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.return_value = _response(200, {"archives": "2024/01"})
            with pytest.raises(UpstreamUnavailable):
                client.fetch_archives("hikaru", ctx)

    def test_connection_errors_exhaust_retries(self, client, ctx):
        with patch("archivesync.catalog.requests.get") as get:
            get.side_effect = requests.exceptions.ConnectionError("refused")
            with pytest.raises(UpstreamUnavailable):
                client.fetch_archives("hikaru", ctx)

        assert get.call_count == 4
