"""Unit tests for the remote options client.

The requests session is replaced with a mock; no network access is needed.

Tests cover:
- Successful endpoint tests (bare list and {"data": [...]} bodies)
- Failures that degrade to an unsuccessful result instead of raising
- The isolated worker pool
"""

from unittest import mock

import pytest
import requests

from formbuilder.errors import RemoteEndpointError
from formbuilder.remote import EndpointTestResult, RemoteOptionsClient

URL = "https://api.example.com/colours"


def make_client(status_code=200, body=None, json_error=None, get_error=None):
    session = mock.create_autospec(requests.Session, instance=True)
    if get_error is not None:
        session.get.side_effect = get_error
    else:
        response = mock.Mock(status_code=status_code)
        if json_error is not None:
            response.json.side_effect = json_error
        else:
            response.json.return_value = body
        session.get.return_value = response
    return RemoteOptionsClient(session=session, timeout=2.5, max_workers=1), session


class TestEndpointSuccess:
    """Test endpoints that return usable options."""

    def test_bare_list(self):
        client, session = make_client(body=[
            {"label": "Red", "value": "red"},
            {"label": "Blue", "value": "blue"},
        ])
        result = client.test_endpoint(URL)

        assert result.success is True
        assert [(o.label, o.value, o.order) for o in result.options] == [("Red", "red", 1), ("Blue", "blue", 2)]
        assert result.status_code == 200
        assert result.response_time_ms >= 0
        session.get.assert_called_once_with(URL, timeout=2.5, headers={"Accept": "application/json"})

    def test_data_wrapper(self):
        client, _ = make_client(body={"data": [{"label": "One", "value": 1, "id": 10}]})
        result = client.test_endpoint(URL)
        assert result.success
        assert result.options[0].id == 10

    def test_to_dict(self):
        client, _ = make_client(body=[{"label": "Red", "value": "red"}])
        data = client.test_endpoint(URL).to_dict()
        assert data["success"] is True
        assert data["data"] == [{"label": "Red", "value": "red"}]
        assert data["statusCode"] == 200
        assert "responseTimeMs" in data


class TestEndpointFailure:
    """Test that failures are reported, never raised."""

    def test_connection_error(self):
        client, _ = make_client(get_error=requests.ConnectionError("connection refused"))
        result = client.test_endpoint(URL)
        assert result.success is False
        assert "connection refused" in result.error
        assert result.options == ()

    def test_timeout(self):
        client, _ = make_client(get_error=requests.Timeout("read timed out"))
        assert client.test_endpoint(URL).success is False

    def test_error_status(self):
        client, _ = make_client(status_code=503, body={"error": "down"})
        result = client.test_endpoint(URL)
        assert result.success is False
        assert result.status_code == 503
        assert result.to_dict() == {"success": False, "error": "Options endpoint answered with HTTP 503", "statusCode": 503}

    def test_non_json_body(self):
        client, _ = make_client(json_error=ValueError("Expecting value"))
        result = client.test_endpoint(URL)
        assert result.success is False
        assert result.error == "Options endpoint did not return JSON"

    def test_malformed_options(self):
        client, _ = make_client(body=[{"name": "Red"}])
        result = client.test_endpoint(URL)
        assert result.success is False
        assert result.error == "Options endpoint returned a malformed option list"
        assert result.status_code == 200

    @pytest.mark.parametrize("url", ["", "ftp://example.com/list", "not a url"])
    def test_invalid_url_is_not_requested(self, url):
        client, session = make_client(body=[])
        assert client.test_endpoint(url).success is False
        session.get.assert_not_called()

    def test_fetch_options_raises(self):
        """Should raise from the lower-level call that test_endpoint wraps."""
        client, _ = make_client(status_code=500, body=None)
        with pytest.raises(RemoteEndpointError):
            client.fetch_options(URL)


class TestIsolation:
    """Test the dedicated worker pool."""

    def test_submit_test_returns_future(self):
        client, _ = make_client(body=[{"label": "Red", "value": "red"}])
        try:
            result = client.submit_test(URL).result(timeout=5)
        finally:
            client.close()
        assert isinstance(result, EndpointTestResult)
        assert result.success

    def test_close_releases_session(self):
        client, session = make_client(body=[])
        client.close()
        session.close.assert_called_once_with()
