"""CloudTalk REST API client.

Implements the call-center platform and contact directory interfaces on top of
CloudTalk's v1 JSON API. Authentication is HTTP Basic with the API key id and
secret. Every request carries a timeout; a request that times out or fails at
the transport level raises PlatformError, except ``place_call`` which folds
failures into a PlaceCallResult so the dispatcher can classify them.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

import requests

from ..core.config import settings
from ..core.models import AttemptResult, Lead
from .base import (
    CallCenterPlatform,
    ContactDirectory,
    ContactError,
    PlaceCallResult,
    PlatformAgent,
    PlatformError,
    RecentCall,
)

logger = logging.getLogger(__name__)

# HTTP status -> attempt classification for POST /calls/create.json
PLACE_CALL_STATUS_MAP = {
    403: AttemptResult.UNAVAILABLE,  # agent not online
    404: AttemptResult.UNAVAILABLE,  # agent id unknown to the platform
    406: AttemptResult.INVALID_TARGET,  # malformed callee number
    409: AttemptResult.BUSY,  # agent already on a call
}

_CALL_KEYS = ("Cdr", "Call", "CallSummary")


def parse_platform_datetime(value) -> Optional[datetime]:
    """Parse the timestamp formats CloudTalk returns."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        logger.warning(f"Unparseable CloudTalk timestamp: {value!r}")
        return None


class CloudTalkClient(CallCenterPlatform, ContactDirectory):
    """CloudTalk API client."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.cloudtalk_key_id
        self.secret = secret if secret is not None else settings.cloudtalk_secret
        self.base_url = (base_url or settings.cloudtalk_base_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (self.key_id, self.secret)
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """Send a request; transport failures become PlatformError."""
        url = f"{self.base_url}{endpoint}"
        try:
            return self.session.request(
                method,
                url,
                params=params,
                json=data,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            logger.error(f"CloudTalk {method} {endpoint} timed out after {self.timeout}s")
            raise PlatformError(f"timeout calling {endpoint}") from e
        except requests.RequestException as e:
            logger.error(f"CloudTalk {method} {endpoint} failed: {e}")
            raise PlatformError(f"request to {endpoint} failed: {e}") from e

    def _get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._request("GET", endpoint, params=params)
        if response.status_code != 200:
            logger.error(f"CloudTalk API error: {response.status_code} - {response.text[:200]}")
            raise PlatformError(f"GET {endpoint} returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise PlatformError(f"GET {endpoint} returned invalid JSON") from e

    @staticmethod
    def _rows(payload: Dict[str, Any], endpoint: str) -> List[Dict[str, Any]]:
        rows = (payload.get("responseData") or {}).get("data")
        if rows is None:
            raise PlatformError(f"Unexpected response shape from {endpoint}")
        return rows

    # === ROSTER ===

    def list_agents(self) -> List[PlatformAgent]:
        """Fetch every agent on the account."""
        endpoint = "/agents/index.json"
        rows = self._rows(self._get_json(endpoint, params={"limit": 1000}), endpoint)

        agents = []
        for row in rows:
            agent = row.get("Agent", row)
            name = f"{agent.get('firstname', '')} {agent.get('lastname', '')}".strip()
            agents.append(PlatformAgent(
                id=str(agent["id"]),
                name=name or agent.get("name", "") or str(agent["id"]),
                status_tag=str(agent.get("availability_status") or ""),
                email=agent.get("email") or "",
                extension=str(agent.get("extension") or ""),
            ))
        return agents

    def list_recent_calls(self, since: datetime, limit: int = 50) -> List[RecentCall]:
        """Fetch calls from the history feed started at or after ``since``."""
        endpoint = "/calls/index.json"
        params = {
            "date_from": since.strftime("%Y-%m-%d %H:%M:%S"),
            "limit": limit,
        }
        rows = self._rows(self._get_json(endpoint, params=params), endpoint)

        calls = []
        for row in rows:
            call = next((row[k] for k in _CALL_KEYS if k in row), row)
            agent = row.get("Agent") or {}
            agent_id = agent.get("id") or call.get("user_id") or call.get("agent_id")
            if agent_id is None:
                continue
            calls.append(RecentCall(
                agent_id=str(agent_id),
                call_id=str(call.get("id", "")),
                started_at=parse_platform_datetime(call.get("started_at") or call.get("date")),
                ended_at=parse_platform_datetime(call.get("ended_at")),
                external_number=str(call.get("public_external") or ""),
            ))
        return calls

    # === CALLS ===

    def place_call(self, agent_id: str, phone_number: str) -> PlaceCallResult:
        """Ring the agent first, then dial the lead once they pick up."""
        endpoint = "/calls/create.json"
        try:
            agent_param = int(agent_id)
        except (TypeError, ValueError):
            agent_param = agent_id

        try:
            response = self._request("POST", endpoint, data={
                "agent_id": agent_param,
                "callee_number": phone_number,
            })
        except PlatformError as e:
            return PlaceCallResult(accepted=False, error_kind=AttemptResult.OTHER_ERROR, message=str(e))

        if response.status_code == 200:
            logger.info(f"CloudTalk accepted call: agent {agent_id} -> {phone_number}")
            return PlaceCallResult(accepted=True, status_code=200)

        error_kind = PLACE_CALL_STATUS_MAP.get(response.status_code, AttemptResult.OTHER_ERROR)
        message = f"HTTP {response.status_code}: {response.text[:200]}"
        logger.warning(f"CloudTalk rejected call for agent {agent_id}: {message}")
        return PlaceCallResult(
            accepted=False,
            error_kind=error_kind,
            message=message,
            status_code=response.status_code,
        )

    # === CONTACTS ===

    def ensure_contact(self, lead: Lead) -> str:
        """Create a CloudTalk contact for the lead and return its id."""
        endpoint = "/contacts/add.json"
        body: Dict[str, Any] = {
            "name": lead.name or lead.phone,
            "ContactNumber": [{"public_number": lead.phone}],
        }
        if lead.email:
            body["ContactEmail"] = [{"email": lead.email}]
        if lead.company:
            body["company"] = lead.company

        try:
            response = self._request("PUT", endpoint, data=body)
        except PlatformError as e:
            raise ContactError(str(e)) from e

        if response.status_code not in (200, 201):
            logger.error(f"CloudTalk contact creation failed: {response.status_code} - {response.text[:200]}")
            raise ContactError(f"contact creation returned HTTP {response.status_code}")

        try:
            contact_id = ((response.json().get("responseData") or {}).get("data") or {}).get("id")
        except ValueError as e:
            raise ContactError("contact creation returned invalid JSON") from e

        if contact_id is None:
            raise ContactError("contact creation response had no contact id")

        logger.info(f"Created CloudTalk contact {contact_id} for {lead.display_name}")
        return str(contact_id)
