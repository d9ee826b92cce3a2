"""
Pytest coverage for the sqlite usage store.
"""

# PIP3 modules
import pytest

# local repo modules
from loopcast.store import UsageDatabase

#============================================

@pytest.fixture
def database(tmp_path):
    db = UsageDatabase(str(tmp_path / "db" / "usage.sqlite"))
    db.initialize()
    yield db
    db.close()

#============================================

def test_default_plans_are_seeded(database):
    trial = database.get_plan(1)
    assert trial.name == "Free Trial"
    assert trial.limit_type == "total"
    assert trial.max_active_streams == 3
    assert trial.limit_seconds == 5 * 3600
    radio = database.get_plan(3)
    assert radio.allowed_types == frozenset({"audio"})
    assert database.get_plan(99) is None


def test_initialize_is_idempotent(database):
    database.initialize()
    assert database.get_plan(2).name == "Pro (Creator)"


def test_new_user_defaults_to_trial(database):
    user = database.create_user("alice")
    assert user.plan_id == 1
    assert user.usage_seconds == 0
    assert database.get_plan_for_user(user.id).name == "Free Trial"
    assert database.get_plan_for_user(12345) is None


def test_add_usage_accumulates(database):
    user = database.create_user("bob")
    assert database.add_usage(user.id, 5) == 5
    assert database.add_usage(user.id, 7) == 12
    assert database.get_user(user.id).usage_seconds == 12


def test_daily_plan_resets_on_new_date(database):
    user = database.create_user("carol", plan_id=2)
    database.add_usage(user.id, 600)
    today = database.get_user(user.id).last_usage_reset
    assert database.sync_usage(user.id, today=today) == 600
    assert database.sync_usage(user.id, today="2099-01-01") == 0
    assert database.get_user(user.id).last_usage_reset == "2099-01-01"


def test_total_plan_never_resets(database):
    user = database.create_user("dave", plan_id=1)
    database.add_usage(user.id, 600)
    assert database.sync_usage(user.id, today="2099-01-01") == 600


def test_set_plan(database):
    user = database.create_user("erin")
    database.set_plan(user.id, 4)
    assert database.get_plan_for_user(user.id).max_active_streams == 10


def test_unknown_user_usage_is_zero(database):
    assert database.sync_usage(404) == 0
