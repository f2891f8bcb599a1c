import pytest
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from bet_escrow.errors import AlreadyProcessed, InvalidInput, InvalidState, Unauthorized
from bet_escrow.models import ZERO_ADDRESS, CallContext
from bet_escrow.oracle_registry import OracleRegistry

ADMIN = "0xAdmin"
REPORTER = "0xReporter"
OTHER = "0xOther"


def ctx(caller):
    return CallContext(caller=caller, now=1_700_000_000)


@pytest.fixture
def registry():
    return OracleRegistry(ADMIN)


def test_add_and_remove_reporter(registry):
    registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    assert registry.is_trusted(REPORTER)
    registry.remove_trusted_reporter(ctx(ADMIN), REPORTER)
    assert not registry.is_trusted(REPORTER)
    names = [e.name for e in registry.events.entries]
    assert names == ["ReporterAdded", "ReporterRemoved"]


def test_only_admin_manages_reporters(registry):
    with pytest.raises(Unauthorized):
        registry.add_trusted_reporter(ctx(OTHER), REPORTER)
    registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    with pytest.raises(Unauthorized):
        registry.remove_trusted_reporter(ctx(REPORTER), REPORTER)
    with pytest.raises(Unauthorized):
        registry.pin_reporter_to_bet(ctx(REPORTER), 0, REPORTER)


@pytest.mark.parametrize("identity", [ZERO_ADDRESS, "", None])
def test_zero_identity_rejected(registry, identity):
    with pytest.raises(InvalidInput):
        registry.add_trusted_reporter(ctx(ADMIN), identity)


def test_duplicate_add_and_unknown_remove(registry):
    registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    with pytest.raises(InvalidState):
        registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    with pytest.raises(InvalidState):
        registry.remove_trusted_reporter(ctx(ADMIN), OTHER)
    assert registry.trusted_reporters() == [REPORTER]


def test_submit_result_by_trusted_reporter(registry):
    registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    assert registry.submit_result(ctx(REPORTER), 0, True) is True
    event = registry.events.filter("ResultSubmitted")[0]
    assert event.args == {"bet_id": 0, "outcome": True, "reporter": REPORTER}
    assert registry.get_submitted_result(0)["outcome"] is True


def test_submit_result_rejects_untrusted(registry):
    with pytest.raises(Unauthorized):
        registry.submit_result(ctx(OTHER), 0, True)
    assert registry.events.filter("ResultSubmitted") == []
    assert registry.get_submitted_result(0) is None


def test_pinned_reporter_is_exclusive(registry):
    registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    registry.add_trusted_reporter(ctx(ADMIN), OTHER)
    assert registry.get_pinned_reporter(3) is None
    registry.pin_reporter_to_bet(ctx(ADMIN), 3, REPORTER)
    assert registry.get_pinned_reporter(3) == REPORTER

    with pytest.raises(Unauthorized):
        registry.submit_result(ctx(OTHER), 3, False)
    assert registry.submit_result(ctx(REPORTER), 3, False) is False
    # unpinned bets stay open to every trusted reporter
    assert registry.submit_result(ctx(OTHER), 4, True) is True


def test_pinning_is_one_time(registry):
    registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    registry.add_trusted_reporter(ctx(ADMIN), OTHER)
    registry.pin_reporter_to_bet(ctx(ADMIN), 1, REPORTER)
    with pytest.raises(AlreadyProcessed):
        registry.pin_reporter_to_bet(ctx(ADMIN), 1, OTHER)
    assert registry.get_pinned_reporter(1) == REPORTER


def test_pin_requires_trusted_reporter(registry):
    with pytest.raises(InvalidInput):
        registry.pin_reporter_to_bet(ctx(ADMIN), 1, OTHER)
    assert registry.get_pinned_reporter(1) is None


def test_transfer_administration(registry):
    registry.transfer_administration(ctx(ADMIN), OTHER)
    assert registry.administrator == OTHER
    with pytest.raises(Unauthorized):
        registry.add_trusted_reporter(ctx(ADMIN), REPORTER)
    registry.add_trusted_reporter(ctx(OTHER), REPORTER)
    with pytest.raises(InvalidInput):
        registry.transfer_administration(ctx(OTHER), ZERO_ADDRESS)
