"""
Pytest coverage for plan checks and scheduled starts.
"""

# Standard Library
import datetime as dt

# PIP3 modules
import pytest

# tests helpers
from conftest import FakeProber, make_transcoder

# local repo modules
from loopcast.errors import ValidationError
from loopcast.models import StreamRequest
from loopcast.quota import QuotaAccountant
from loopcast.service import QuotaRejected, StreamService
from loopcast.store import UsageDatabase
from loopcast.stream_manager import StreamSupervisor

DEST = "rtmp://a.rtmp.youtube.com/live2/key"

#============================================

@pytest.fixture
def database(app_config):
    db = UsageDatabase(app_config.database_path)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def service(tmp_path, app_config, database, registry, events):
    app_config.encoder.ffmpeg_path = make_transcoder(tmp_path, ticks=[0])
    accountant = QuotaAccountant(database, app_config.quota.sample_interval_seconds)
    supervisor = StreamSupervisor(app_config, registry, accountant, events, prober=FakeProber())
    return StreamService(supervisor, database)


def _request(user_id, media_dir, names=("a.mp4",)):
    return StreamRequest(files=[str(media_dir / n) for n in names], destination=DEST, owner_id=user_id)

#============================================

async def test_concurrency_cap_rejects_extra_start(service, database, media_dir):
    user = database.create_user("trial-user", plan_id=1)
    for _ in range(3):
        await service.start(_request(user.id, media_dir))
    with pytest.raises(QuotaRejected, match="At most 3"):
        await service.start(_request(user.id, media_dir))
    assert len(service.supervisor.list_active(user.id)) == 3
    await service.supervisor.shutdown()


async def test_exhausted_trial_is_rejected(service, database, media_dir):
    user = database.create_user("spent", plan_id=1)
    database.add_usage(user.id, 5 * 3600)
    with pytest.raises(QuotaRejected, match="Trial"):
        await service.start(_request(user.id, media_dir))
    assert service.supervisor.list_active(user.id) == []


def test_radio_plan_rejects_video(service, database, media_dir):
    user = database.create_user("dj", plan_id=3)
    with pytest.raises(QuotaRejected, match="audio"):
        service.preflight(_request(user.id, media_dir))
    assert service.preflight(_request(user.id, media_dir, names=("radio1.mp3",))).name == "Radio 24/7"


def test_preflight_validation(service, database, media_dir):
    user = database.create_user("eve", plan_id=2)
    with pytest.raises(ValidationError):
        service.preflight(StreamRequest(files=[], destination=DEST, owner_id=user.id))
    with pytest.raises(ValidationError):
        service.preflight(StreamRequest(files=["a.mp4"], destination="", owner_id=user.id))
    with pytest.raises(ValidationError, match="Unknown user"):
        service.preflight(_request(999, media_dir))


async def test_stop_checks_owner(service, database, media_dir):
    owner = database.create_user("owner", plan_id=2)
    other = database.create_user("other", plan_id=2)
    session_id = await service.start(_request(owner.id, media_dir))
    assert await service.stop(other.id, session_id) is False
    assert await service.stop(owner.id, session_id) is True
    assert service.status(owner.id)["active"] is False


async def test_status_reports_streams_and_usage(service, database, media_dir):
    user = database.create_user("status", plan_id=2)
    database.add_usage(user.id, 42)
    session_id = await service.start(_request(user.id, media_dir))
    status = service.status(user.id)
    assert status["active"] is True
    assert status["usage_seconds"] == 42
    assert [s["id"] for s in status["streams"]] == [session_id]
    assert status["streams"][0]["platform"] == "YouTube"
    await service.supervisor.shutdown()


def test_schedule_and_cancel(service, database, media_dir):
    user = database.create_user("planner", plan_id=2)
    run_date = dt.datetime.now(dt.timezone.utc) + dt.timedelta(hours=1)
    job_id = service.schedule(_request(user.id, media_dir), run_date)
    assert job_id.startswith(f"{user.id}-")
    assert [job["job_id"] for job in service.scheduled_jobs(user.id)] == [job_id]
    assert service.scheduled_jobs(user.id + 1) == []

    assert service.cancel_scheduled(user.id + 1, job_id) is False
    assert service.cancel_scheduled(user.id, job_id) is True
    assert service.cancel_scheduled(user.id, job_id) is False


def test_schedule_in_the_past_is_rejected(service, database, media_dir):
    user = database.create_user("late", plan_id=2)
    with pytest.raises(ValidationError, match="future"):
        service.schedule(_request(user.id, media_dir), dt.datetime(2000, 1, 1))


async def test_failed_scheduled_start_is_reported(service, database, media_dir, events):
    user = database.create_user("broke", plan_id=1)
    database.add_usage(user.id, 5 * 3600)
    await service._run_scheduled(_request(user.id, media_dir))
    error = events.logs()[-1]
    assert error["type"] == "error"
    assert error["message"].startswith("Scheduled stream failed")


async def test_same_time_schedules_keep_every_destination(service, database, media_dir):
    user = database.create_user("multicast", plan_id=2)
    run_date = dt.datetime.now(dt.timezone.utc) + dt.timedelta(minutes=30)
    youtube = _request(user.id, media_dir)
    facebook = _request(user.id, media_dir)
    facebook.destination = "rtmps://live-api-s.facebook.com:443/rtmp/key"

    service.start_scheduler()
    try:
        first = service.schedule(youtube, run_date)
        second = service.schedule(facebook, run_date)
        assert first != second
        assert sorted(job["job_id"] for job in service.scheduled_jobs(user.id)) == sorted([first, second])
        destinations = {job.args[0].destination for job in service.scheduler.get_jobs()}
        assert destinations == {DEST, facebook.destination}
    finally:
        service.stop_scheduler()
