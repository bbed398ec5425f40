"""Tests for round-robin dispatch with busy-agent fallback."""

import pytest
import tempfile
import threading
from collections import Counter
from pathlib import Path

from lead_dispatch.core.models import AttemptResult, FinalStatus, Lead
from lead_dispatch.routing import DistributionLedger, FallbackDispatcher, LedgerContentionError

from fakes import FakePlatform, make_agent


ALICE = make_agent("1", "Alice")
BOB = make_agent("2", "Bob")
CAROL = make_agent("3", "Carol")

LEAD = Lead(phone="+15551234567", name="Jane Doe")


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def ledger(temp_data_dir):
    """Create ledger with temp storage."""
    return DistributionLedger(state_path=temp_data_dir / "state.json", retry_backoff=0)


@pytest.fixture
def dispatcher(platform, ledger):
    return FallbackDispatcher(platform, ledger)


class TestFallbackDispatcher:
    """Tests for FallbackDispatcher."""

    def test_round_robin_fairness(self, dispatcher, platform):
        """Test successive leads rotate A, B, C, then back to A."""
        chosen = [dispatcher.dispatch(LEAD, [ALICE, BOB, CAROL]).agent.id for _ in range(4)]

        assert chosen == ["1", "2", "3", "1"]
        assert platform.placed_agents == ["1", "2", "3", "1"]

    def test_fallback_to_last_agent(self, dispatcher, platform, ledger):
        """Test a busy next agent falls back through the rotation."""
        ledger.commit_decision(ledger.load(), ALICE)
        platform.answers["2"] = AttemptResult.BUSY

        outcome = dispatcher.dispatch(LEAD, [ALICE, BOB])

        assert outcome.success
        assert outcome.final_status == FinalStatus.CALL_PLACED
        assert outcome.agent.id == "1"
        assert outcome.used_fallback
        assert [a.agent_id for a in outcome.attempts] == ["2", "1"]
        assert [a.result for a in outcome.attempts] == [AttemptResult.BUSY, AttemptResult.SUCCESS]
        assert ledger.load().last_agent_id == "1"

    def test_all_busy_exhausts(self, dispatcher, platform, ledger):
        """Test every busy agent is tried exactly once."""
        for agent_id in ("1", "2", "3"):
            platform.answers[agent_id] = AttemptResult.BUSY

        outcome = dispatcher.dispatch(LEAD, [ALICE, BOB, CAROL])

        assert not outcome.success
        assert outcome.final_status == FinalStatus.ALL_AGENTS_EXHAUSTED
        assert outcome.agent is None
        assert len(outcome.attempts) == 3
        assert sorted(platform.placed_agents) == ["1", "2", "3"]
        assert [a.attempt_number for a in outcome.attempts] == [1, 2, 3]
        assert outcome.saw_retryable_failure
        assert ledger.load().last_agent_id is None

    def test_unavailable_is_retryable(self, dispatcher, platform):
        """Test an unavailable agent is skipped like a busy one."""
        platform.answers["1"] = AttemptResult.UNAVAILABLE

        outcome = dispatcher.dispatch(LEAD, [ALICE, BOB])

        assert outcome.agent.id == "2"
        assert len(outcome.attempts) == 2

    def test_invalid_target_stops(self, dispatcher, platform, ledger):
        """Test a bad lead number stops after one attempt."""
        platform.answers["1"] = AttemptResult.INVALID_TARGET

        outcome = dispatcher.dispatch(LEAD, [ALICE, BOB, CAROL])

        assert outcome.final_status == FinalStatus.DATA_ERROR
        assert len(outcome.attempts) == 1
        assert platform.placed_agents == ["1"]
        assert not outcome.used_fallback
        assert ledger.load().last_agent_id is None

    def test_other_error_stops(self, dispatcher, platform):
        """Test an unexpected platform error stops the cascade."""
        platform.answers["1"] = AttemptResult.OTHER_ERROR

        outcome = dispatcher.dispatch(LEAD, [ALICE, BOB])

        assert outcome.final_status == FinalStatus.REMOTE_TRANSPORT_ERROR
        assert len(outcome.attempts) == 1

    def test_exception_becomes_other_error(self, dispatcher, platform, monkeypatch):
        """Test an exception from the platform is recorded, not raised."""
        def explode(agent_id, phone_number):
            raise RuntimeError("socket closed")

        monkeypatch.setattr(platform, "place_call", explode)

        outcome = dispatcher.dispatch(LEAD, [ALICE])

        assert outcome.final_status == FinalStatus.REMOTE_TRANSPORT_ERROR
        assert outcome.attempts[0].result == AttemptResult.OTHER_ERROR
        assert "socket closed" in outcome.attempts[0].message

    def test_no_agents(self, dispatcher, platform):
        """Test an empty pool places no calls."""
        outcome = dispatcher.dispatch(LEAD, [])

        assert outcome.final_status == FinalStatus.NO_AGENTS_AVAILABLE
        assert outcome.attempts == []
        assert platform.placed == []

    def test_unavailable_agents_filtered(self, dispatcher, platform):
        """Test agents without a dispatch verdict are never called."""
        on_call = make_agent("2", "Bob", available=False)

        outcome = dispatcher.dispatch(LEAD, [ALICE, on_call])

        assert outcome.agent.id == "1"
        assert platform.placed_agents == ["1"]

    def test_ledger_contention_after_call(self, dispatcher, platform, ledger, monkeypatch):
        """Test a lost cursor write is reported with the agent that took the call."""
        def contended(*args, **kwargs):
            raise LedgerContentionError("moved")

        monkeypatch.setattr(ledger, "commit_decision", contended)

        outcome = dispatcher.dispatch(LEAD, [ALICE])

        assert outcome.final_status == FinalStatus.REMOTE_TRANSPORT_ERROR
        assert outcome.agent.id == "1"
        assert "ledger update failed" in outcome.error

    def test_preview(self, dispatcher, ledger):
        """Test preview names the next agent without placing a call."""
        ledger.commit_decision(ledger.load(), BOB)
        assert dispatcher.preview([ALICE, BOB, CAROL]).id == "3"
        assert dispatcher.preview([]) is None

    def test_concurrent_dispatch_shares_rotation(self, temp_data_dir, platform):
        """Test simultaneous dispatches through separate ledgers split the calls evenly."""
        path = temp_data_dir / "state.json"
        workers = 6
        barrier = threading.Barrier(workers)
        outcomes = []
        errors = []

        def run():
            dispatcher = FallbackDispatcher(platform, DistributionLedger(state_path=path, retry_backoff=0))
            barrier.wait()
            try:
                outcomes.append(dispatcher.dispatch(LEAD, [ALICE, BOB, CAROL]))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert errors == []
        assert all(outcome.success for outcome in outcomes)
        assert Counter(platform.placed_agents) == {"1": 2, "2": 2, "3": 2}

        state = DistributionLedger(state_path=path).load()
        assert len(state.history) == workers
        assert state.version == workers
