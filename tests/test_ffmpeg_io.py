import subprocess

import pytest

from audio_recorder import ffmpeg_io
from audio_recorder.capture import CaptureConfig
from audio_recorder.config import ConfigError
from audio_recorder.ffmpeg_io import build_ffmpeg_command, check_ffmpeg, input_spec


def test_command_records_and_detects_silence():
    config = CaptureConfig(
        device="1",
        noise_level_db=-35,
        silence_duration=1.5,
        codec="aac",
        bitrate="128k",
        sample_rate=48000,
        channels=2,
    )

    cmd = build_ffmpeg_command(config, "/tmp/out.aac")

    assert cmd[0] == "ffmpeg"
    assert cmd[-1] == "/tmp/out.aac"
    assert cmd[cmd.index("-f") + 1] == "avfoundation"
    assert cmd[cmd.index("-i") + 1] == ":1"
    assert cmd[cmd.index("-af") + 1] == "silencedetect=noise=-35dB:d=1.5"
    assert cmd[cmd.index("-ac") + 1] == "2"
    assert cmd[cmd.index("-acodec") + 1] == "aac"
    assert cmd[cmd.index("-b:a") + 1] == "128k"
    assert cmd[cmd.index("-ar") + 1] == "48000"
    assert "-y" in cmd
    assert cmd.index("-f") < cmd.index("-i") < cmd.index("-af")


def test_input_spec_per_demuxer():
    assert input_spec("avfoundation", "0") == ":0"
    assert input_spec("avfoundation", ":2") == ":2"
    assert input_spec("alsa", "hw:CARD=Device,DEV=0") == "hw:CARD=Device,DEV=0"
    assert input_spec("pulse", "default") == "default"


def test_check_ffmpeg_missing_binary(monkeypatch):
    monkeypatch.setattr(ffmpeg_io.shutil, "which", lambda _: None)

    with pytest.raises(ConfigError, match="not installed"):
        check_ffmpeg()


def test_check_ffmpeg_reports_failed_version(monkeypatch):
    monkeypatch.setattr(ffmpeg_io.shutil, "which", lambda _: "/usr/bin/ffmpeg")
    monkeypatch.setattr(
        ffmpeg_io.subprocess,
        "run",
        lambda args, **kwargs: subprocess.CompletedProcess(args, 1),
    )

    with pytest.raises(ConfigError):
        check_ffmpeg()


def test_check_ffmpeg_returns_resolved_path(monkeypatch):
    seen = []

    def fake_run(args, **kwargs):
        seen.append(args)
        return subprocess.CompletedProcess(args, 0)

    monkeypatch.setattr(ffmpeg_io.shutil, "which", lambda _: "/opt/bin/ffmpeg")
    monkeypatch.setattr(ffmpeg_io.subprocess, "run", fake_run)

    assert check_ffmpeg() == "/opt/bin/ffmpeg"
    assert seen == [["/opt/bin/ffmpeg", "-version"]]
