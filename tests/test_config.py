"""
Pytest coverage for environment configuration.
"""

# PIP3 modules
import pytest

# local repo modules
from loopcast.config import EncoderConfig, load_config

#============================================

def test_defaults(monkeypatch):
    for name in ("LOOPCAST_FFMPEG", "LOOPCAST_STARTUP_TIMEOUT", "NOTIFY_WEBHOOK_URL", "LOOPCAST_REAP_ON_STARTUP"):
        monkeypatch.delenv(name, raising=False)
    config = load_config()
    assert config.encoder.ffmpeg_path == "ffmpeg"
    assert config.encoder.startup_timeout == 30
    assert config.quota.sample_interval_seconds == 5
    assert config.notifier.webhook_url is None
    assert config.reap_on_startup is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("LOOPCAST_FFMPEG", "/opt/ffmpeg/bin/ffmpeg")
    monkeypatch.setenv("LOOPCAST_STATIC_FPS", "15")
    monkeypatch.setenv("LOOPCAST_REAP_ON_STARTUP", "no")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "http://hooks.local/x")
    config = load_config()
    assert config.encoder.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
    assert config.encoder.process_name == "ffmpeg"
    assert config.encoder.static_fps == 15
    assert config.reap_on_startup is False
    assert config.notifier.webhook_url == "http://hooks.local/x"


def test_bad_integer_is_rejected(monkeypatch):
    monkeypatch.setenv("LOOPCAST_STARTUP_TIMEOUT", "soon")
    with pytest.raises(ValueError, match="LOOPCAST_STARTUP_TIMEOUT"):
        load_config()


def test_bad_bitrate_is_rejected(monkeypatch):
    monkeypatch.setenv("LOOPCAST_MOTION_BITRATE", "fast")
    with pytest.raises(ValueError):
        load_config()


def test_encoder_helpers():
    encoder = EncoderConfig(ffmpeg_path="C:/tools/FFmpeg.exe")
    assert encoder.process_name == "FFmpeg"
    assert encoder.keyframe_interval(20) == 40
    assert encoder.bufsize("1500k") == "3000k"
