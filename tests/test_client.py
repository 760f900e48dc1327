"""Tests for ApiClient with a mocked requests session."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from news_timer.client import ApiClient
from news_timer.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)


def make_response(status: int = 200, body=None, reason: str = "OK") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response._content = json.dumps(body).encode("utf-8") if body is not None else b""
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return ApiClient("http://timer.local:7780/", timeout=3, session=session)


class TestRequests:
    def test_get_sources(self, client, session):
        session.request.return_value = make_response(body=[{"key": "bbc"}])
        assert client.get_sources() == [{"key": "bbc"}]
        session.request.assert_called_once_with(
            "GET", "http://timer.local:7780/api/sources", json=None, timeout=3
        )

    def test_add_source_omits_empty_fields(self, client, session):
        session.request.return_value = make_response(201, {"key": "cnn"})
        client.add_source("CNN")
        assert session.request.call_args.kwargs["json"] == {"name": "CNN"}

        client.add_source("BBC", icon="⚽", url="https://bbc.co.uk", allocation=600)
        assert session.request.call_args.kwargs["json"] == {
            "name": "BBC",
            "icon": "⚽",
            "url": "https://bbc.co.uk",
            "allocation": 600,
        }

    def test_update_settings(self, client, session):
        session.request.return_value = make_response(body={"success": True})
        client.update_settings(900, True)
        args, kwargs = session.request.call_args
        assert args == ("PUT", "http://timer.local:7780/api/settings")
        assert kwargs["json"] == {"totalTimeLimit": 900, "autoStart": True}

    def test_record_usage(self, client, session):
        session.request.return_value = make_response(body={"success": True})
        payload = {"sourceKey": "bbc", "timeUsed": 10, "sessions": 0, "overrunTime": 0}
        client.record_usage(payload)
        args, kwargs = session.request.call_args
        assert args == ("POST", "http://timer.local:7780/api/usage")
        assert kwargs["json"] == payload

    def test_allocation_and_delete_paths(self, client, session):
        session.request.return_value = make_response(body={"success": True})
        client.update_source_allocation("bbc", 600)
        assert session.request.call_args.args == ("PUT", "http://timer.local:7780/api/sources/bbc/allocation")
        client.delete_source("bbc")
        assert session.request.call_args.args == ("DELETE", "http://timer.local:7780/api/sources/bbc")

    def test_empty_body_returns_none(self, client, session):
        session.request.return_value = make_response(200, None)
        assert client.reset() is None


class TestErrors:
    @pytest.mark.parametrize("status, code, expected", [
        (400, "VALIDATION_ERROR", ValidationError),
        (400, "CONFLICT", ConflictError),
        (404, "NOT_FOUND", NotFoundError),
        (409, None, ConflictError),
        (500, "INTERNAL_ERROR", InternalError),
        (503, "SERVICE_UNAVAILABLE", StoreUnavailable),
    ])
    def test_status_mapping(self, client, session, status, code, expected):
        session.request.return_value = make_response(status, {"error": "nope", "code": code})
        with pytest.raises(expected) as excinfo:
            client.get_settings()
        assert excinfo.value.message == "nope"

    def test_non_json_error_uses_reason(self, client, session):
        response = make_response(502, None, reason="Bad Gateway")
        response._content = b"<html>bad gateway</html>"
        session.request.return_value = response
        with pytest.raises(InternalError) as excinfo:
            client.get_stats()
        assert excinfo.value.message == "Bad Gateway"

    def test_connection_error_is_unavailable(self, client, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(StoreUnavailable):
            client.health()

    def test_timeout_is_unavailable(self, client, session):
        session.request.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(StoreUnavailable) as excinfo:
            client.get_sources()
        assert excinfo.value.message == "Request timed out"
