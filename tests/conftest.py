"""
Shared fixtures: fake transcoder executables, fake probes and stores.
"""

# Standard Library
import asyncio
import os
import stat
import sys
import textwrap

# PIP3 modules
import pytest

# local repo modules
from loopcast.config import AppConfig, EncoderConfig
from loopcast.models import Plan
from loopcast.notifier import EventPublisher
from loopcast.quota import QuotaAccountant
from loopcast.registry import StreamRegistry
from loopcast.stream_manager import StreamSupervisor

#============================================

PLAN = Plan(
    id=2,
    name="Pro",
    max_storage_mb=10240,
    allowed_types=frozenset({"video", "audio"}),
    max_active_streams=5,
    daily_limit_hours=24,
    limit_type="daily",
)

#============================================

def write_executable(path, body: str) -> str:
    """
    Write a python script with a shebang pointing at this interpreter.
    """
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


def make_transcoder(tmp_path, ticks=(), then="hang", stderr="", delay=0.02, name="fake_ffmpeg") -> str:
    """
    Fake ffmpeg that prints one progress block per tick, then hangs, exits or crashes.
    """
    endings = {
        "hang": "while True:\n    time.sleep(1)\n",
        "exit": "sys.exit(0)\n",
        "crash": "sys.exit(1)\n",
    }
    body = (
        "import sys, time\n"
        f"for tick in {list(ticks)!r}:\n"
        "    sys.stdout.write('out_time_us=%d\\nbitrate=1500.0kbits/s\\nprogress=continue\\n' % int(tick * 1000000))\n"
        "    sys.stdout.flush()\n"
        f"    time.sleep({delay})\n"
        f"sys.stderr.write({stderr!r})\n"
        "sys.stderr.flush()\n"
        + endings[then]
    )
    return write_executable(tmp_path / name, body)

#============================================

class FakeProber:
    """
    Answers probe questions from a lookup instead of running ffprobe.
    """

    def __init__(self, audio=True, durations=None):
        self.audio = audio
        self.durations = durations or {}
        self.audio_calls = []

    def has_audio(self, path: str) -> bool:
        self.audio_calls.append(path)
        if isinstance(self.audio, dict):
            return self.audio.get(os.path.basename(path), False)
        return self.audio

    def duration(self, path: str):
        return self.durations.get(os.path.basename(path))


class FakeUsageStore:
    """
    In-memory usage counter for a single plan.
    """

    def __init__(self, plan=PLAN, usage=0):
        self.plan = plan
        self.usage = usage
        self.charges = []

    def add_usage(self, user_id: int, delta_seconds: int) -> int:
        self.charges.append(delta_seconds)
        self.usage += delta_seconds
        return self.usage

    def get_plan_for_user(self, user_id: int):
        return self.plan


class RecordingPublisher(EventPublisher):
    """
    Keeps every published event for assertions.
    """

    def __init__(self):
        super().__init__()
        self.records = []

    def publish(self, event, data):
        self.records.append((event, data))
        super().publish(event, data)

    def names(self):
        return [event for event, _ in self.records]

    def logs(self):
        return [data for event, data in self.records if event == "log"]

    async def wait_for(self, event: str, timeout: float = 5.0):
        async def _poll():
            while event not in self.names():
                await asyncio.sleep(0.01)
        await asyncio.wait_for(_poll(), timeout)

#============================================

@pytest.fixture
def media_dir(tmp_path):
    """
    Directory with empty placeholder media files.
    """
    directory = tmp_path / "media"
    directory.mkdir()
    for name in ("a.mp4", "b.mp4", "c.mp4", "radio1.mp3", "radio2.mp3", "art.jpg", "img1.jpg", "img2.jpg"):
        (directory / name).write_bytes(b"")
    return directory


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        scratch_dir=str(tmp_path / "scratch"),
        database_path=str(tmp_path / "loopcast.sqlite"),
        reap_on_startup=False,
        encoder=EncoderConfig(ffprobe_path=str(tmp_path / "no-ffprobe"), startup_timeout=5),
    )


@pytest.fixture
def store():
    return FakeUsageStore()


@pytest.fixture
def events():
    return RecordingPublisher()


@pytest.fixture
def registry():
    return StreamRegistry()


@pytest.fixture
def make_supervisor(app_config, registry, store, events):
    """
    Build a supervisor around a given fake transcoder path.
    """
    def _make(ffmpeg_path: str, prober=None, **encoder_overrides):
        app_config.encoder.ffmpeg_path = ffmpeg_path
        for key, value in encoder_overrides.items():
            setattr(app_config.encoder, key, value)
        accountant = QuotaAccountant(store, app_config.quota.sample_interval_seconds)
        return StreamSupervisor(app_config, registry, accountant, events, prober=prober or FakeProber())
    return _make
