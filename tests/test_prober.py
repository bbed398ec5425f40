"""Tests for agent availability probing."""

import pytest
from datetime import datetime, timedelta

from lead_dispatch.availability import AvailabilityProber, ProbeError, classify_status
from lead_dispatch.core.config import DispatchConfig
from lead_dispatch.integrations.base import PlatformAgent, PlatformError, RecentCall

from fakes import FakePlatform


NOW = datetime(2024, 5, 1, 14, 30, 0)


@pytest.fixture
def platform():
    """Platform with three ready agents."""
    return FakePlatform(roster=[
        PlatformAgent(id="1", name="Alice", status_tag="online"),
        PlatformAgent(id="2", name="Bob", status_tag="available"),
        PlatformAgent(id="3", name="Carol", status_tag="idle"),
    ])


@pytest.fixture
def prober(platform):
    """Create prober with a fixed clock."""
    return AvailabilityProber(platform, DispatchConfig(), clock=lambda: NOW)


class TestClassifyStatus:
    """Tests for classify_status."""

    def test_ready_tags(self):
        """Test the default allow-list."""
        for tag in ("online", "available", "ready", "idle"):
            assert classify_status(tag)

    def test_case_and_whitespace(self):
        """Test tags are compared case-insensitively."""
        assert classify_status("  ONLINE ")

    def test_unknown_tags_unavailable(self):
        """Test anything outside the allow-list is unavailable."""
        for tag in ("busy", "offline", "calling", "wrap_up", "", None):
            assert not classify_status(tag)

    def test_custom_allow_list(self):
        """Test a configured allow-list replaces the default."""
        assert classify_status("wrap_up", ["wrap_up"])
        assert not classify_status("online", ["wrap_up"])


class TestAvailabilityProber:
    """Tests for AvailabilityProber."""

    def test_all_ready(self, prober):
        """Test ready agents with no calls are dispatchable."""
        available = prober.available_agents()
        assert [a.id for a in available] == ["1", "2", "3"]

    def test_status_excludes(self, platform, prober):
        """Test a non-ready status tag excludes the agent."""
        platform.roster[1].status_tag = "busy"
        agents = {a.id: a for a in prober.probe()}

        assert not agents["2"].available_for_dispatch
        assert agents["1"].available_for_dispatch

    def test_open_call_excludes_ready_agent(self, platform, prober):
        """Test an agent on a call is never dispatchable even if marked online."""
        platform.recent_calls = [
            RecentCall(agent_id="1", call_id="c1", started_at=NOW - timedelta(minutes=2),
                       external_number="+15550001111"),
        ]
        agents = {a.id: a for a in prober.probe()}

        assert not agents["1"].available_for_dispatch
        assert agents["1"].active_call.call_id == "c1"
        assert agents["1"].active_call.duration_seconds(NOW) == 120
        assert agents["2"].available_for_dispatch

    def test_ended_call_ignored(self, platform, prober):
        """Test a finished call does not block the agent."""
        platform.recent_calls = [
            RecentCall(agent_id="1", call_id="c1", started_at=NOW - timedelta(minutes=3),
                       ended_at=NOW - timedelta(minutes=1)),
        ]
        assert "1" in [a.id for a in prober.available_agents()]

    def test_stale_open_call_ages_out(self, platform, prober):
        """Test an open call older than the window is treated as over."""
        platform.recent_calls = [
            RecentCall(agent_id="1", call_id="c1", started_at=NOW - timedelta(minutes=10)),
        ]
        assert "1" in [a.id for a in prober.available_agents()]

    def test_live_feed_preferred(self, platform, prober):
        """Test the live feed replaces the call-history heuristic."""
        platform.recent_calls = [
            RecentCall(agent_id="1", call_id="c1", started_at=NOW - timedelta(minutes=1)),
        ]
        platform.active_calls = [
            RecentCall(agent_id="3", call_id="c9", started_at=NOW - timedelta(minutes=20)),
        ]

        available = [a.id for a in prober.available_agents()]
        assert available == ["1", "2"]
        assert platform.recent_requests == 0

    def test_cache(self, platform, prober):
        """Test results are cached until invalidated."""
        prober.probe()
        prober.probe()
        assert platform.roster_requests == 1

        prober.probe(fresh=True)
        assert platform.roster_requests == 2

        prober.invalidate()
        prober.probe()
        assert platform.roster_requests == 3

    def test_roster_failure_raises(self, platform, prober):
        """Test a failed roster read produces no verdict."""
        platform.roster_error = PlatformError("timeout")
        with pytest.raises(ProbeError):
            prober.probe()

    def test_call_feed_failure_raises(self, platform, prober):
        """Test a failed call feed does not yield a partial roster."""
        platform.calls_error = PlatformError("HTTP 500")
        with pytest.raises(ProbeError):
            prober.available_agents()

    def test_failure_keeps_previous_cache(self, platform, prober):
        """Test a failed refresh leaves the cached roster usable."""
        prober.probe()
        platform.roster_error = PlatformError("timeout")

        with pytest.raises(ProbeError):
            prober.probe(fresh=True)
        assert len(prober.probe()) == 3

    def test_status_report(self, platform, prober):
        """Test the operator summary."""
        platform.recent_calls = [
            RecentCall(agent_id="2", call_id="c1", started_at=NOW - timedelta(minutes=1)),
        ]
        report = prober.status_report()

        assert report["total_agents"] == 3
        assert report["available_agents"] == 2
        assert report["busy_agents"] == 1
        assert report["active_calls"] == 1
        assert report["generated_at"] == NOW.isoformat()
