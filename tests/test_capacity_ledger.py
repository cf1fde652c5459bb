"""Tests for capacity accounting."""

import threading

import pytest

from common.types import StorageAccount
from engine.capacity_ledger import CapacityLedger
from engine.exceptions import InsufficientCapacityError, UnknownAccountError


@pytest.fixture
def accounts():
    return {
        "a": StorageAccount("a", "/t/a.json", total_bytes=100),
        "b": StorageAccount("b", "/t/b.json", total_bytes=50, used_bytes=20),
    }


@pytest.fixture
def ledger(accounts):
    return CapacityLedger(accounts)


class TestReserveRelease:
    """Test committed usage changes."""

    def test_reserve_increases_used(self, ledger, accounts):
        ledger.reserve("a", 40)

        assert accounts["a"].used_bytes == 40
        assert ledger.changed

    def test_reserve_up_to_exact_total(self, ledger, accounts):
        ledger.reserve("b", 30)

        assert accounts["b"].used_bytes == 50

    def test_reserve_beyond_total_raises(self, ledger, accounts):
        with pytest.raises(InsufficientCapacityError):
            ledger.reserve("b", 31)

        assert accounts["b"].used_bytes == 20

    def test_release_decreases_used(self, ledger, accounts):
        ledger.release("b", 15)

        assert accounts["b"].used_bytes == 5

    def test_release_clamps_at_zero(self, ledger, accounts):
        ledger.release("b", 500)

        assert accounts["b"].used_bytes == 0

    def test_unknown_account(self, ledger):
        with pytest.raises(UnknownAccountError):
            ledger.reserve("nobody", 1)


class TestHolds:
    """Test tentative reservations."""

    def test_hold_reduces_available_but_not_used(self, ledger, accounts):
        ledger.hold("a", 30)

        assert ledger.available_bytes("a") == 70
        assert accounts["a"].used_bytes == 0

    def test_commit_moves_hold_to_used(self, ledger, accounts):
        hold = ledger.hold("a", 30)

        ledger.commit(hold)

        assert accounts["a"].used_bytes == 30
        assert ledger.available_bytes("a") == 70
        assert ledger.pending_holds() == 0

    def test_cancel_frees_hold(self, ledger, accounts):
        hold = ledger.hold("a", 30)

        ledger.cancel(hold)

        assert ledger.available_bytes("a") == 100
        assert accounts["a"].used_bytes == 0

    def test_commit_twice_raises(self, ledger):
        hold = ledger.hold("a", 10)
        ledger.commit(hold)

        with pytest.raises(ValueError):
            ledger.commit(hold)

    def test_hold_beyond_available_raises(self, ledger):
        ledger.hold("b", 25)

        with pytest.raises(InsufficientCapacityError):
            ledger.hold("b", 6)

    def test_concurrent_commits_are_serialized(self, ledger, accounts):
        holds = [ledger.hold("a", 1) for _ in range(100)]
        threads = [threading.Thread(target=ledger.commit, args=(h,)) for h in holds]

        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert accounts["a"].used_bytes == 100
        assert ledger.pending_holds() == 0
