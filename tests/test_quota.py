"""
Pytest coverage for usage accounting.
"""

# tests helpers
from conftest import PLAN, FakeUsageStore

# local repo modules
from loopcast.models import PipelineMode, StreamSession
from loopcast.quota import QuotaAccountant, exhaustion_message, is_exhausted

#============================================

def _session():
    return StreamSession(
        id="s1",
        owner_id=1,
        mode=PipelineMode.VIDEO,
        destination="rtmp://example/live",
        display_name="Stream s1",
        platform_label="Custom",
    )

#============================================

def test_charges_sum_to_final_marker():
    accountant = QuotaAccountant(FakeUsageStore(), sample_interval=5)
    session = _session()
    deltas = [accountant.accountable_delta(session, marker) for marker in (0, 5, 5, 9, 12, 18)]
    assert deltas == [0, 5, 0, 0, 7, 6]
    assert sum(deltas) == 18
    assert session.last_accounted_offset == 18


def test_out_of_order_marker_never_charges_negative():
    accountant = QuotaAccountant(FakeUsageStore(), sample_interval=5)
    session = _session()
    assert accountant.accountable_delta(session, 20) == 20
    assert accountant.accountable_delta(session, 3) == 0
    assert session.last_accounted_offset == 20
    assert accountant.accountable_delta(session, 26) == 6


def test_fractional_markers_keep_remainder():
    accountant = QuotaAccountant(FakeUsageStore(), sample_interval=5)
    session = _session()
    assert accountant.accountable_delta(session, 5.9) == 5
    assert accountant.accountable_delta(session, 10.2) == 5
    assert session.last_accounted_offset == 10


def test_charge_reports_ceiling():
    store = FakeUsageStore(usage=100)
    result = QuotaAccountant(store).charge(1, 5)
    assert result.usage_seconds == 105
    assert result.limit_seconds == PLAN.daily_limit_hours * 3600
    assert result.exhausted is False
    assert store.charges == [5]


def test_charge_at_ceiling_is_exhausted():
    store = FakeUsageStore(usage=PLAN.limit_seconds - 3)
    result = QuotaAccountant(store).charge(1, 5)
    assert result.exhausted is True
    assert result.remaining_seconds == 0


def test_zero_charge_does_not_touch_store():
    store = FakeUsageStore()
    assert QuotaAccountant(store).charge(1, 0) is None
    assert store.charges == []


def test_is_exhausted_ignores_limit_type():
    assert is_exhausted(PLAN.limit_seconds, PLAN) is True
    assert is_exhausted(PLAN.limit_seconds - 1, PLAN) is False


def test_exhaustion_wording():
    assert "Trial" in exhaustion_message("total", 5 * 3600)
    assert "Daily limit of 24 hours" in exhaustion_message("daily", 24 * 3600)
