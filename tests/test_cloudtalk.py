"""Tests for the CloudTalk API client."""

import pytest
import requests
from datetime import datetime, timezone

from lead_dispatch.core.models import AttemptResult, Lead
from lead_dispatch.integrations.base import ContactError, PlatformError
from lead_dispatch.integrations.cloudtalk import CloudTalkClient, parse_platform_datetime


class StubResponse:
    """Minimal requests.Response stand-in."""

    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class StubSession:
    """Records requests and replays queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.headers = {}
        self.auth = None

    def request(self, method, url, params=None, json=None, timeout=None):
        self.requests.append({
            "method": method,
            "url": url,
            "params": params,
            "json": json,
            "timeout": timeout,
        })
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(*responses):
    session = StubSession(*responses)
    client = CloudTalkClient(
        key_id="key",
        secret="secret",
        base_url="https://api.example.test/api/",
        timeout=7.5,
        session=session,
    )
    return client, session


class TestCloudTalkClient:
    """Tests for CloudTalkClient."""

    def test_auth_and_timeout(self):
        """Test basic auth and the timeout are applied to every request."""
        client, session = make_client(StubResponse(payload={"responseData": {"data": []}}))
        client.list_agents()

        assert session.auth == ("key", "secret")
        assert session.headers["Accept"] == "application/json"
        assert session.requests[0]["url"] == "https://api.example.test/api/agents/index.json"
        assert session.requests[0]["timeout"] == 7.5

    def test_list_agents(self):
        """Test roster rows are normalized."""
        client, _ = make_client(StubResponse(payload={"responseData": {"data": [
            {"Agent": {"id": 12, "firstname": "Alice", "lastname": "Smith",
                       "email": "alice@example.com", "extension": 101,
                       "availability_status": "online"}},
            {"Agent": {"id": 13, "firstname": "Bob", "lastname": "",
                       "availability_status": None}},
        ]}}))

        agents = client.list_agents()

        assert agents[0].id == "12"
        assert agents[0].name == "Alice Smith"
        assert agents[0].status_tag == "online"
        assert agents[0].extension == "101"
        assert agents[1].name == "Bob"
        assert agents[1].status_tag == ""

    def test_list_agents_http_error(self):
        """Test a non-200 roster response raises."""
        client, _ = make_client(StubResponse(status_code=500, text="boom"))
        with pytest.raises(PlatformError):
            client.list_agents()

    def test_list_agents_bad_shape(self):
        """Test a payload without responseData.data raises."""
        client, _ = make_client(StubResponse(payload={"unexpected": True}))
        with pytest.raises(PlatformError):
            client.list_agents()

    def test_timeout_raises_platform_error(self):
        """Test a timeout is surfaced as a platform failure."""
        client, _ = make_client(requests.Timeout("read timed out"))
        with pytest.raises(PlatformError, match="timeout"):
            client.list_agents()

    def test_list_recent_calls(self):
        """Test call rows in any of the known wrappers are read."""
        client, session = make_client(StubResponse(payload={"responseData": {"data": [
            {"Cdr": {"id": 1, "started_at": "2024-05-01 14:00:00", "ended_at": None,
                     "public_external": "+15550001111"},
             "Agent": {"id": 12}},
            {"Call": {"id": 2, "started_at": "2024-05-01T13:00:00Z",
                      "ended_at": "2024-05-01T13:05:00Z", "user_id": 13}},
            {"CallSummary": {"id": 3, "started_at": "2024-05-01 12:00:00"}},
        ]}}))

        calls = client.list_recent_calls(datetime(2024, 5, 1, 13, 55), limit=25)

        assert session.requests[0]["params"] == {"date_from": "2024-05-01 13:55:00", "limit": 25}
        assert len(calls) == 2
        assert calls[0].agent_id == "12"
        assert calls[0].is_open
        assert calls[0].external_number == "+15550001111"
        assert calls[1].agent_id == "13"
        assert not calls[1].is_open

    @pytest.mark.parametrize("status_code,expected", [
        (403, AttemptResult.UNAVAILABLE),
        (404, AttemptResult.UNAVAILABLE),
        (406, AttemptResult.INVALID_TARGET),
        (409, AttemptResult.BUSY),
        (500, AttemptResult.OTHER_ERROR),
    ])
    def test_place_call_rejections(self, status_code, expected):
        """Test HTTP statuses map to attempt results."""
        client, _ = make_client(StubResponse(status_code=status_code, text="rejected"))

        placed = client.place_call("12", "+15551234567")

        assert not placed.accepted
        assert placed.result == expected
        assert placed.status_code == status_code

    def test_place_call_accepted(self):
        """Test a 200 places the call with a numeric agent id."""
        client, session = make_client(StubResponse(payload={"responseData": {"status": 200}}))

        placed = client.place_call("12", "+15551234567")

        assert placed.result == AttemptResult.SUCCESS
        assert session.requests[0]["method"] == "POST"
        assert session.requests[0]["json"] == {"agent_id": 12, "callee_number": "+15551234567"}

    def test_place_call_transport_failure(self):
        """Test a transport failure is folded into the result."""
        client, _ = make_client(requests.ConnectionError("reset"))

        placed = client.place_call("12", "+15551234567")

        assert placed.result == AttemptResult.OTHER_ERROR

    def test_ensure_contact(self):
        """Test the contact body and returned id."""
        client, session = make_client(StubResponse(payload={"responseData": {"data": {"id": 555}}}))

        contact_id = client.ensure_contact(Lead(phone="+15551234567", name="Jane", email="jane@example.com"))

        assert contact_id == "555"
        request = session.requests[0]
        assert request["method"] == "PUT"
        assert request["url"].endswith("/contacts/add.json")
        assert request["json"]["ContactNumber"] == [{"public_number": "+15551234567"}]
        assert request["json"]["ContactEmail"] == [{"email": "jane@example.com"}]

    def test_ensure_contact_failure(self):
        """Test contact errors are typed."""
        client, _ = make_client(StubResponse(status_code=400, text="bad"))
        with pytest.raises(ContactError):
            client.ensure_contact(Lead(phone="+15551234567"))

    def test_ensure_contact_missing_id(self):
        """Test a response without an id is a failure."""
        client, _ = make_client(StubResponse(payload={"responseData": {"data": {}}}))
        with pytest.raises(ContactError):
            client.ensure_contact(Lead(phone="+15551234567"))


class TestParsePlatformDatetime:
    """Tests for parse_platform_datetime."""

    def test_formats(self):
        """Test the timestamp shapes the API returns."""
        assert parse_platform_datetime("2024-05-01 14:00:00") == datetime(2024, 5, 1, 14, 0)
        assert parse_platform_datetime("2024-05-01T14:00:00Z") == datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)
        assert parse_platform_datetime(None) is None
        assert parse_platform_datetime("") is None
        assert parse_platform_datetime("yesterday") is None
